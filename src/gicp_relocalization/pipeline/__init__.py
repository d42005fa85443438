"""
Pipeline Module

Orchestrates map loading, scan ingestion, periodic registration and
transform publishing.
"""

from .slots import AtomicSlot
from .periodic import PeriodicTask
from .broadcast import (
    TransformStamped,
    TransformBroadcaster,
    LoggingTransformBroadcaster,
    RecordingTransformBroadcaster,
)
from .relocalization import PipelineState, PublishedTransform, RelocalizationPipeline

__all__ = [
    "AtomicSlot",
    "PeriodicTask",
    "TransformStamped",
    "TransformBroadcaster",
    "LoggingTransformBroadcaster",
    "RecordingTransformBroadcaster",
    "PipelineState",
    "PublishedTransform",
    "RelocalizationPipeline",
]
