"""
Relocalization Pipeline

Holds the prior map (registration target), the latest live scan
(registration source) and the last converged map <- odom transform, and
drives the two periodic activities:

- registration: aligns the current scan to the map, seeded with the last
  published transform, and publishes the result when it converged
- publish: re-emits the last published transform at a higher rate

Scans arrive through `on_scan` from whatever thread the host delivers them
on. The source scan and the published transform each live in an AtomicSlot,
so every activity works on a consistent snapshot.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import numpy as np

from ..alignment.gicp_registration import GICPRegistration, RegistrationResult
from ..preprocessing.loader import PointCloudLoader
from ..preprocessing.preprocess import IndexedCloud, preprocess_points
from ..utils.config import AppConfig
from ..utils.logging import setup_logger
from .broadcast import LoggingTransformBroadcaster, TransformBroadcaster, TransformStamped
from .periodic import PeriodicTask
from .slots import AtomicSlot

logger = setup_logger(__name__)


class PipelineState(Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    REGISTERING = "registering"

    @property
    def ready(self) -> bool:
        return self is not PipelineState.UNINITIALIZED


@dataclass(frozen=True)
class PublishedTransform:
    """Last converged map <- odom transform and the capture time of its scan."""

    transform: np.ndarray
    stamp: float


class RelocalizationPipeline:
    """
    Scan-to-map relocalization driven by two periodic activities.

    Usage:
        pipeline = RelocalizationPipeline(load_config())
        if pipeline.load_reference_map():
            with pipeline:
                ...  # host calls pipeline.on_scan(points, stamp) per scan
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        broadcaster: Optional[TransformBroadcaster] = None,
        registration: Optional[GICPRegistration] = None,
        loader: Optional[PointCloudLoader] = None,
    ):
        self.config = config or AppConfig()
        self.broadcaster = broadcaster or LoggingTransformBroadcaster()
        self.registration = registration or GICPRegistration.from_config(self.config.registration)
        self.loader = loader or PointCloudLoader()

        guess = self.config.registration.initial_guess
        self._initial_guess = np.eye(4) if guess is None else np.asarray(guess, dtype=np.float64)

        self._target: AtomicSlot[IndexedCloud] = AtomicSlot()
        self._source: AtomicSlot[IndexedCloud] = AtomicSlot()
        self._published: AtomicSlot[PublishedTransform] = AtomicSlot()
        self._last_result: AtomicSlot[RegistrationResult] = AtomicSlot()

        self._registering = threading.Event()
        self._registration_lock = threading.Lock()

        timing = self.config.timing
        self._tasks = [
            PeriodicTask("registration", timing.registration_period_s, self.registration_tick),
            PeriodicTask("publish", timing.publish_period_s, self.publish_tick),
        ]

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        if not self._target.is_set:
            return PipelineState.UNINITIALIZED
        if self._registering.is_set():
            return PipelineState.REGISTERING
        return PipelineState.IDLE

    @property
    def ready(self) -> bool:
        return self._target.is_set

    @property
    def target(self) -> Optional[IndexedCloud]:
        return self._target.get()

    @property
    def source(self) -> Optional[IndexedCloud]:
        return self._source.get()

    @property
    def published(self) -> Optional[PublishedTransform]:
        return self._published.get()

    @property
    def last_result(self) -> Optional[RegistrationResult]:
        return self._last_result.get()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def load_reference_map(self, source: Union[str, Path, np.ndarray, None] = None) -> bool:
        """
        Load and prepare the prior map as registration target.

        Args:
            source: Map file path or (N, 3) array; defaults to
                config.paths.prior_map_file.

        Returns:
            True when the pipeline became ready. Any failure is logged and
            leaves the pipeline uninitialized.
        """
        if self.ready:
            logger.warning("Reference map already loaded; ignoring reload request.")
            return False

        if source is None:
            source = self.config.paths.prior_map_file

        try:
            if isinstance(source, np.ndarray):
                points = source
                origin = "array"
            else:
                if not str(source):
                    raise ValueError("No prior map file configured (paths.prior_map_file is empty)")
                points = self.loader.load(source)
                origin = str(source)
        except (FileNotFoundError, ValueError) as e:
            logger.error("Failed to load prior map: %s", e)
            return False

        prep = self.config.preprocessing
        try:
            target = preprocess_points(
                points,
                prep.global_leaf_size,
                prep.num_neighbors,
                num_threads=self.config.performance.num_threads,
                regularization=prep.covariance_regularization,
            )
        except ValueError as e:
            logger.error("Failed to prepare prior map from %s: %s", origin, e)
            return False

        if target.empty:
            logger.error("Prior map from %s holds no usable points", origin)
            return False

        if not self._target.set_if_empty(target):
            logger.warning("Reference map already loaded; ignoring reload request.")
            return False

        logger.info("Loaded global map with %d points", len(target))
        return True

    def on_scan(self, points: np.ndarray, stamp: Optional[float] = None) -> bool:
        """
        Prepare a live scan and install it as the registration source.

        Args:
            points: (N, 3) scan points in the odometry frame
            stamp: Capture time in seconds (defaults to now)

        Returns:
            True if the scan replaced the current source.
        """
        if not self.ready:
            logger.debug("Scan received before the prior map is loaded; ignoring.")
            return False

        stamp = time.time() if stamp is None else float(stamp)
        start = time.perf_counter()
        prep = self.config.preprocessing
        try:
            scan = preprocess_points(
                points,
                prep.registered_leaf_size,
                prep.num_neighbors,
                num_threads=self.config.performance.num_threads,
                regularization=prep.covariance_regularization,
                stamp=stamp,
            )
        except ValueError as e:
            logger.warning("Discarding scan at t=%.3f: %s", stamp, e)
            return False
        if scan.empty:
            logger.warning("Scan at t=%.3f has no usable points; keeping previous source.", stamp)
            return False

        self._source.set(scan)
        logger.debug(
            "Installed scan at t=%.3f (%d points) in %.4f s",
            stamp,
            len(scan),
            time.perf_counter() - start,
        )
        return True

    # ------------------------------------------------------------------
    # Periodic activities
    # ------------------------------------------------------------------

    def registration_tick(self) -> Optional[RegistrationResult]:
        """
        Align the current source to the map once.

        Returns:
            The RegistrationResult, or None when not ready or no scan is available.
        """
        target = self._target.get()
        source = self._source.get()
        if target is None or source is None:
            return None

        with self._registration_lock:
            published = self._published.get()
            guess = self._initial_guess if published is None else published.transform

            self._registering.set()
            try:
                result = self.registration.align(target, source, initial_guess=guess)
            finally:
                self._registering.clear()

            self._last_result.set(result)
            if result.converged:
                transform = result.T_target_source.copy()
                transform.setflags(write=False)
                self._published.set(PublishedTransform(transform=transform, stamp=source.stamp))
            else:
                logger.warning(
                    "GICP did not converge (iterations=%d, inliers=%d); keeping last published transform",
                    result.iterations,
                    result.num_inliers,
                )
        return result

    def publish_tick(self) -> Optional[TransformStamped]:
        """
        Emit the last published transform.

        Returns:
            The emitted message, or None when nothing has been published yet.
        """
        if not self.ready:
            return None
        published = self._published.get()
        if published is None:
            return None

        frames = self.config.frames
        message = TransformStamped.from_matrix(
            published.transform,
            stamp=published.stamp,
            frame_id=frames.map_frame_id,
            child_frame_id=frames.odom_frame_id,
        )
        self.broadcaster.send_transform(message)
        return message

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if not self.ready:
            logger.warning("Starting without a prior map; registration stays idle until one is loaded.")
        for task in self._tasks:
            task.start()

    def stop(self) -> None:
        for task in self._tasks:
            task.stop(join=True)

    def __enter__(self) -> "RelocalizationPipeline":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
