import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from portal.session.attempt_timer import Clock, utcnow

logger = logging.getLogger(__name__)


class ViolationKind(str, Enum):
    TAB_HIDDEN = "tab_hidden"
    WINDOW_BLUR = "window_blur"


@dataclass(slots=True)
class ViolationEvent:
    kind: ViolationKind
    violations_count: int
    occurred_at: datetime


class IntegrityMonitor:
    """Observes visibility and focus transitions for one attempt.

    The counter only ever grows. Acknowledging the warning clears the
    pending flag and nothing else. No violation count triggers a submit;
    the final count is reported with the result for review.
    """

    def __init__(
        self,
        listener: Optional[Callable[[ViolationEvent], None]] = None,
        initial_count: int = 0,
        clock: Clock = utcnow,
    ) -> None:
        self._listener = listener
        self._count = max(0, initial_count)
        self._clock = clock
        self._active = False
        self._warning_pending = False

    @property
    def violations_count(self) -> int:
        return self._count

    @property
    def warning_pending(self) -> bool:
        return self._warning_pending

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True

    def stop(self) -> None:
        self._active = False

    def visibility_changed(self, hidden: bool) -> Optional[ViolationEvent]:
        if not hidden:
            return None
        return self._record(ViolationKind.TAB_HIDDEN)

    def window_blurred(self, document_hidden: bool) -> Optional[ViolationEvent]:
        # A hidden document already counted through visibility_changed
        if document_hidden:
            return None
        return self._record(ViolationKind.WINDOW_BLUR)

    def acknowledge(self) -> None:
        self._warning_pending = False

    def _record(self, kind: ViolationKind) -> Optional[ViolationEvent]:
        if not self._active:
            return None
        self._count += 1
        self._warning_pending = True
        event = ViolationEvent(
            kind=kind, violations_count=self._count, occurred_at=self._clock()
        )
        logger.info("Integrity violation %s (total %d)", kind.value, self._count)
        if self._listener is not None:
            self._listener(event)
        return event
