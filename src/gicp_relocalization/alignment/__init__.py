"""
Spatial Alignment Module

Generalized ICP registration of a live scan against the prior map.
"""

from .gicp_registration import GICPRegistration, RegistrationResult

__all__ = [
    "GICPRegistration",
    "RegistrationResult",
]
