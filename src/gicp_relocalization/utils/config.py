"""
Configuration management for gicp-relocalization.

Provides a typed pydantic model and YAML loader with sensible defaults.
The parameters are fixed for the process lifetime; nothing re-reads them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, List, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PathsConfig(BaseModel):
    prior_map_file: str = Field(
        default="",
        description="Reference (prior) map point cloud: .pcd, .las/.laz, .npy or .xyz",
    )


class PerformanceConfig(BaseModel):
    num_threads: int = Field(
        default=4,
        ge=1,
        description="Worker parallelism hint for neighbor queries",
    )


class PreprocessingConfig(BaseModel):
    num_neighbors: int = Field(
        default=20,
        description="Neighbor count k used for covariance estimation",
    )
    global_leaf_size: float = Field(
        default=0.25,
        gt=0.0,
        description="Voxel size used to downsample the reference map",
    )
    registered_leaf_size: float = Field(
        default=0.25,
        gt=0.0,
        description="Voxel size used to downsample each live scan",
    )
    covariance_regularization: Literal["plane", "none"] = Field(default="plane")

    @field_validator("num_neighbors")
    @classmethod
    def _at_least_three_neighbors(cls, value: int) -> int:
        if value < 3:
            raise ValueError("num_neighbors must be >= 3 to estimate a covariance")
        return value


class RegistrationConfig(BaseModel):
    max_dist_sq: float = Field(
        default=1.0,
        gt=0.0,
        description="Maximum squared correspondence distance; farther pairs are rejected",
    )
    max_iterations: int = Field(default=20, ge=1)
    translation_epsilon: float = Field(
        default=1e-3,
        description="Translation step (map units) below which registration has converged",
    )
    rotation_epsilon_deg: float = Field(
        default=0.1,
        description="Rotation step (degrees) below which registration has converged",
    )
    min_correspondences: int = Field(default=6, ge=3)
    lm_init_lambda: float = Field(default=1e-6, ge=0.0)
    lm_lambda_factor: float = Field(default=10.0, gt=1.0)
    lm_max_inner_iterations: int = Field(default=10, ge=1)
    max_condition_number: float = Field(default=1e12, gt=1.0)
    initial_guess: Optional[List[List[float]]] = Field(
        default=None,
        description="4x4 initial guess used until a transform has been published (None = identity)",
    )

    @field_validator("initial_guess")
    @classmethod
    def _initial_guess_is_4x4(cls, value: Optional[List[List[float]]]) -> Optional[List[List[float]]]:
        if value is not None and (len(value) != 4 or any(len(row) != 4 for row in value)):
            raise ValueError("initial_guess must be a 4x4 matrix")
        return value


class FramesConfig(BaseModel):
    map_frame_id: str = Field(default="map")
    odom_frame_id: str = Field(default="odom")


class TimingConfig(BaseModel):
    registration_period_s: float = Field(default=0.5, gt=0.0, description="2 Hz registration cycle")
    publish_period_s: float = Field(default=0.05, gt=0.0, description="20 Hz publish cycle")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    frames: FramesConfig = Field(default_factory=FramesConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/gicp_relocalization/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}") from e
