"""
Edge-triggered rule state.

The state is TRIGGERED or CLEARED and always mirrors the latest cycle's
aggregate result: no hysteresis, no debouncing. The transition timestamp
and the assets that caused the transition only change when the state does,
so repeating a cycle with the same outcome is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Callable

from notification.rule.models import RuleReason, RuleStateName

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f+00:00"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """Render ``ts`` in UTC as ``YYYY-MM-DD HH:MM:SS.ffffff+00:00``."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class RuleStateMachine:
    """Holds the rule's current state and the last transition.

    Parameters
    ----------
    clock : callable or None
        Returns the current UTC time. Injected by tests.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utc_now
        self._state = RuleStateName.CLEARED
        self._assets: list[str] = []
        self._changed_at = self._clock()

    @property
    def state(self) -> RuleStateName:
        return self._state

    @property
    def is_triggered(self) -> bool:
        return self._state is RuleStateName.TRIGGERED

    @property
    def assets(self) -> list[str]:
        return list(self._assets)

    @property
    def changed_at(self) -> datetime:
        return self._changed_at

    def set_state(self, triggered: bool, assets: Sequence[str] = ()) -> bool:
        """Apply one cycle's aggregate result.

        Returns
        -------
        bool
            True if the state changed.
        """
        new_state = RuleStateName.TRIGGERED if triggered else RuleStateName.CLEARED
        if new_state is self._state:
            return False

        previous = self._state
        self._state = new_state
        self._assets = list(assets)
        self._changed_at = self._clock()
        logger.info(
            "Rule state %s -> %s (assets=%s)",
            previous.value,
            new_state.value,
            self._assets,
        )
        return True

    def get_reason(self) -> RuleReason:
        return RuleReason(
            reason=self._state,
            asset=self._assets,
            timestamp=format_timestamp(self._changed_at),
        )
