"""
Unit tests for the rule state machine.

Covers:
    - Initial CLEARED state and its reason payload
    - TRIGGERED / CLEARED transitions with an injected clock
    - Idempotent repeats (timestamp and assets unchanged)
    - Timestamp formatting
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from notification.rule.logic.state import RuleStateMachine, format_timestamp
from notification.rule.models import RuleStateName

NOW = datetime(2026, 2, 6, 12, 0, 0, tzinfo=timezone.utc)


def _make_clock(start: datetime = NOW, step: timedelta = timedelta(seconds=1)):
    """Clock returning ``start``, ``start + step``, ... on successive calls."""
    calls = {"n": 0}

    def clock() -> datetime:
        ts = start + step * calls["n"]
        calls["n"] += 1
        return ts

    return clock


class TestRuleStateMachine:
    """Tests for RuleStateMachine."""

    def test_initial_state(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())
        reason = sm.get_reason()
        assert sm.state is RuleStateName.CLEARED
        assert sm.is_triggered is False
        assert reason.reason is RuleStateName.CLEARED
        assert reason.asset == []
        assert reason.timestamp == "2026-02-06 12:00:00.000000+00:00"

    def test_transitions(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())

        assert sm.set_state(True, ["modbus"]) is True
        assert sm.state is RuleStateName.TRIGGERED
        assert sm.assets == ["modbus"]
        assert sm.changed_at == NOW + timedelta(seconds=1)

        assert sm.set_state(False, ["modbus"]) is True
        assert sm.state is RuleStateName.CLEARED
        assert sm.changed_at == NOW + timedelta(seconds=2)

        assert sm.set_state(True, ["modbus"]) is True
        assert sm.state is RuleStateName.TRIGGERED
        assert sm.get_reason().timestamp == "2026-02-06 12:00:03.000000+00:00"

    def test_repeat_is_noop(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())
        sm.set_state(True, ["A", "B"])
        changed_at = sm.changed_at

        assert sm.set_state(True, ["A"]) is False
        assert sm.changed_at == changed_at
        assert sm.assets == ["A", "B"]

    def test_clear_while_cleared_is_noop(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())
        assert sm.set_state(False, ["A"]) is False
        assert sm.assets == []
        assert sm.changed_at == NOW

    def test_reason_serialises(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())
        sm.set_state(True, ["modbus"])
        payload = sm.get_reason().model_dump(mode="json")
        assert payload == {
            "reason": "triggered",
            "asset": ["modbus"],
            "timestamp": "2026-02-06 12:00:01.000000+00:00",
        }

    def test_assets_copy(self) -> None:
        sm = RuleStateMachine(clock=_make_clock())
        sm.set_state(True, ["A"])
        sm.assets.append("B")
        assert sm.assets == ["A"]


class TestFormatTimestamp:
    """Tests for format_timestamp."""

    def test_utc(self) -> None:
        ts = datetime(2026, 2, 6, 12, 30, 45, 123456, tzinfo=timezone.utc)
        assert format_timestamp(ts) == "2026-02-06 12:30:45.123456+00:00"

    def test_naive_treated_as_utc(self) -> None:
        assert format_timestamp(datetime(2026, 1, 1)) == "2026-01-01 00:00:00.000000+00:00"

    def test_converted_to_utc(self) -> None:
        tz = timezone(timedelta(hours=2))
        ts = datetime(2026, 2, 6, 14, 0, 0, tzinfo=tz)
        assert format_timestamp(ts) == "2026-02-06 12:00:00.000000+00:00"
