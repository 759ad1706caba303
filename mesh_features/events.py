"""
Detection lifecycle events and observers.

The detector and the feature pool report what they do through an
injectable observer: any callable taking one event. The default observer
writes each event to the ``mesh_features.events`` logger with the event
fields as structured ``extra`` data, so JSON log files carry them as
top-level keys.

Usage:
    seen = []
    pool = FeaturePool(observer=seen.append)
"""

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeshRegistered:
    mesh_id: str
    vertex_count: int
    triangle_count: int


@dataclass(frozen=True)
class DetectionStarted:
    mesh_id: str
    triangle_count: int


@dataclass(frozen=True)
class DetectionCompleted:
    mesh_id: str
    planes: int
    cylinders: int
    classified_faces: int
    duration_seconds: float


@dataclass(frozen=True)
class DetectionFailed:
    mesh_id: str
    error_type: str
    error: str
    duration_seconds: float
    timed_out: bool = False


@dataclass(frozen=True)
class MeshEvicted:
    mesh_id: str
    reason: str  # "lru", "manual", "clear" or "config"


FeatureEvent = Union[MeshRegistered, DetectionStarted, DetectionCompleted,
                     DetectionFailed, MeshEvicted]
Observer = Callable[[FeatureEvent], None]

_MESSAGES = {
    MeshRegistered: "Mesh registered: %(mesh_id)s (%(triangle_count)d triangles)",
    DetectionStarted: "Detection started: %(mesh_id)s",
    DetectionCompleted: ("Detection completed: %(mesh_id)s, %(planes)d planes, "
                         "%(cylinders)d cylinders (%(duration_seconds).3fs)"),
    DetectionFailed: "Detection failed: %(mesh_id)s - %(error_type)s: %(error)s",
    MeshEvicted: "Mesh evicted: %(mesh_id)s (%(reason)s)",
}


class LoggingObserver:
    """Observer that logs every event.

    Failures are logged at WARNING, evictions and detection starts at
    DEBUG, everything else at ``level``.
    """

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def level_for(self, event: FeatureEvent) -> int:
        if isinstance(event, DetectionFailed):
            return logging.WARNING
        if isinstance(event, (DetectionStarted, MeshEvicted)):
            return logging.DEBUG
        return self.level

    def __call__(self, event: FeatureEvent) -> None:
        fields = asdict(event)
        message = _MESSAGES[type(event)] % fields
        self.log.log(self.level_for(event), message,
                     extra={"event": type(event).__name__, **fields})


def emit(observer: Optional[Observer], event: FeatureEvent) -> None:
    """Deliver event to observer; a failing observer never breaks detection."""
    if observer is None:
        return
    try:
        observer(event)
    except Exception:
        logger.exception("Observer %r failed on %s", observer, type(event).__name__)
