"""
Cooperative time budget for a single detection run.
"""

import time
from typing import Callable, Optional

from mesh_features.errors import DetectionTimeout


class Deadline:
    """Wall-clock budget that detection phases poll between units of work.

    The clock starts when the Deadline is created, so a pool creates one
    when a worker picks the mesh up rather than when it is queued.

    Example:
        deadline = Deadline(2.0, mesh_id=mesh_id)
        for component in components:
            deadline.check("cylinder fitting")
            ...
    """

    def __init__(
        self,
        budget_seconds: Optional[float] = None,
        mesh_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.budget_seconds = budget_seconds
        self.mesh_id = mesh_id
        self._clock = clock
        self.started_at = clock()
        self.expires_at = None if budget_seconds is None else self.started_at + budget_seconds

    @classmethod
    def unbounded(cls, mesh_id: Optional[str] = None) -> 'Deadline':
        return cls(None, mesh_id=mesh_id)

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started_at

    @property
    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    def check(self, stage: str = "") -> None:
        """Raise DetectionTimeout if the budget is used up."""
        if self.expired():
            raise DetectionTimeout(
                self.mesh_id, self.budget_seconds, stage, elapsed_seconds=self.elapsed)
