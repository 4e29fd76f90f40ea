"""Per-device visit builder.

Recordings for one device arrive newest first.  Each recording either
extends the open visit (pulling its start earlier) or closes it and opens a
new one.  The builder never re-sorts its feed.
"""

from __future__ import annotations

import logging
from typing import Callable

from visit_engine.domain.interval import IntervalPolicy
from visit_engine.domain.recording import Recording
from visit_engine.domain.visit import Visit

logger = logging.getLogger(__name__)


class VisitBuilder:
    """Stitches one device's recordings into visits.

    Args:
        device_id: The device whose recordings this builder consumes.
        policy: Decides whether an older recording joins the open visit.
        next_visit_id: Supplies ids for newly opened visits.
    """

    __slots__ = ("device_id", "exhausted", "_policy", "_next_visit_id", "_current")

    def __init__(
        self,
        device_id: int,
        policy: IntervalPolicy,
        next_visit_id: Callable[[], int],
    ) -> None:
        self.device_id = device_id
        # Set once the feed has moved past this device for good.
        self.exhausted = False
        self._policy = policy
        self._next_visit_id = next_visit_id
        self._current: Visit | None = None

    @property
    def current(self) -> Visit | None:
        """The open visit, holding the oldest recording seen so far."""
        return self._current

    def consume(
        self,
        recording: Recording,
        position: int,
        requesting_user_id: int | None = None,
    ) -> tuple[Visit, bool]:
        """Feed one recording.  Returns ``(visit, opened)``.

        Raises:
            ValueError: If the recording belongs to another device.
        """
        if recording.device_id != self.device_id:
            raise ValueError(
                f"recording {recording.recording_id} is for device {recording.device_id}, "
                f"not {self.device_id}"
            )

        current = self._current
        if current is not None and self._policy.is_within_visit_interval(
            current.oldest_recording, recording
        ):
            current.add_recording(recording, position, requesting_user_id)
            return current, False

        visit = Visit(self._next_visit_id(), recording, position, requesting_user_id)
        self._current = visit
        logger.debug(
            "Device %s: opened visit %d at position %d", self.device_id, visit.visit_id, position
        )
        return visit, True

    def close_feed(self) -> None:
        """Record that no further recordings will arrive for this device."""
        self.exhausted = True
