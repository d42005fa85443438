"""
Transform output.

The published pose is a TransformStamped message handed to a
TransformBroadcaster. The transport behind the broadcaster is up to the
host application; two in-process broadcasters are provided: one that logs
every message and one that records them.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

import numpy as np

from ..utils.logging import setup_logger
from ..utils.rigid_transform import make_transform, matrix_to_quaternion, quaternion_to_matrix

logger = setup_logger(__name__)


@dataclass(frozen=True)
class TransformStamped:
    """
    Rigid transform from `child_frame_id` coordinates into `frame_id` coordinates.

    Attributes:
        stamp: Capture time (seconds) of the scan the transform was computed from
        frame_id: Parent frame (the map frame)
        child_frame_id: Child frame (the odometry frame)
        translation: (x, y, z)
        rotation: Unit quaternion (x, y, z, w)
    """

    stamp: float
    frame_id: str
    child_frame_id: str
    translation: Tuple[float, float, float]
    rotation: Tuple[float, float, float, float]

    @classmethod
    def from_matrix(
        cls,
        transform: np.ndarray,
        stamp: float,
        frame_id: str,
        child_frame_id: str,
    ) -> "TransformStamped":
        T = np.asarray(transform, dtype=float)
        x, y, z = (float(v) for v in T[:3, 3])
        return cls(
            stamp=float(stamp),
            frame_id=frame_id,
            child_frame_id=child_frame_id,
            translation=(x, y, z),
            rotation=matrix_to_quaternion(T[:3, :3]),
        )

    def matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix of this transform."""
        return make_transform(quaternion_to_matrix(self.rotation), self.translation)


class TransformBroadcaster(Protocol):
    def send_transform(self, message: TransformStamped) -> None:
        ...


class LoggingTransformBroadcaster:
    """Writes every message to the log at DEBUG level."""

    def send_transform(self, message: TransformStamped) -> None:
        logger.debug(
            "%s -> %s @ %.3f: t=(%.4f, %.4f, %.4f) q=(%.5f, %.5f, %.5f, %.5f)",
            message.frame_id,
            message.child_frame_id,
            message.stamp,
            *message.translation,
            *message.rotation,
        )


class RecordingTransformBroadcaster:
    """Keeps every message it receives, in order."""

    def __init__(self, maxlen: Optional[int] = None):
        self._lock = threading.Lock()
        self._messages: List[TransformStamped] = []
        self.maxlen = maxlen

    def send_transform(self, message: TransformStamped) -> None:
        with self._lock:
            self._messages.append(message)
            if self.maxlen is not None and len(self._messages) > self.maxlen:
                del self._messages[: len(self._messages) - self.maxlen]

    @property
    def messages(self) -> List[TransformStamped]:
        with self._lock:
            return list(self._messages)

    @property
    def last(self) -> Optional[TransformStamped]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
