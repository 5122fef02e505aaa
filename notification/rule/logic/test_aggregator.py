"""
Unit tests for per-cycle aggregation.

Covers:
    - AND across all registered assets
    - Absent assets and empty registries
    - Non-numeric and malformed readings
    - Causing assets reported for each outcome
"""

from __future__ import annotations

import logging

import pytest

from notification.rule.config import TruthinessPolicy
from notification.rule.logic.aggregator import (
    AssetEvaluationAggregator,
    CycleResult,
    bind_datapoints,
)
from notification.rule.logic.bindings import VariableBindingTable
from notification.rule.logic.registry import TriggerRegistry
from notification.rule.models import TriggerConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_aggregator(*triggers: tuple[str, str, str]) -> AssetEvaluationAggregator:
    """Build an aggregator from (asset, expression, datapoint) triples."""
    registry = TriggerRegistry(capacity=20, policy=TruthinessPolicy.NONZERO)
    if triggers:
        result = registry.replace_all(
            [
                TriggerConfig(
                    asset=asset,
                    expression=expression,
                    datapoints=[{"name": dp, "type": "float"}],
                )
                for asset, expression, dp in triggers
            ]
        )
        assert result.ok
    return AssetEvaluationAggregator(registry)


def _two_assets() -> AssetEvaluationAggregator:
    return _make_aggregator(
        ("A", "temp > 20", "temp"),
        ("B", "hum > 50", "hum"),
    )


# ===========================================================================
# 1. bind_datapoints
# ===========================================================================


class TestBindDatapoints:
    """Tests for bind_datapoints."""

    def test_counts_numeric_values(self) -> None:
        table = VariableBindingTable(capacity=4)
        count = bind_datapoints(table, {"a": 1, "b": 2.5, "c": "x", "d": None})
        assert count == 2
        assert table.snapshot() == {"a": 1.0, "b": 2.5}

    def test_undeclared_datapoints_appended(self) -> None:
        table = VariableBindingTable(capacity=4)
        table.declare("a")
        bind_datapoints(table, {"a": 1.0, "extra": 3.0})
        assert table.names() == ["a", "extra"]


# ===========================================================================
# 2. evaluate_cycle
# ===========================================================================


class TestEvaluateCycle:
    """Tests for AssetEvaluationAggregator.evaluate_cycle."""

    def test_all_assets_fire(self) -> None:
        result = _two_assets().evaluate_cycle(
            {"A": {"temp": 25.0}, "B": {"hum": 60.0}}
        )
        assert result.triggered is True
        assert result.asset_results == {"A": True, "B": True}
        assert result.causing_assets == ["A", "B"]

    def test_absent_asset_blocks_trigger(self) -> None:
        result = _two_assets().evaluate_cycle({"A": {"temp": 25.0}})
        assert result.triggered is False
        assert result.missing == ["B"]
        assert result.causing_assets == ["B"]

    def test_last_asset_does_not_override(self) -> None:
        result = _two_assets().evaluate_cycle(
            {"A": {"temp": 10.0}, "B": {"hum": 60.0}}
        )
        assert result.triggered is False
        assert result.asset_results == {"A": False, "B": True}
        assert result.causing_assets == ["A"]

    def test_empty_registry_never_triggers(self) -> None:
        result = _make_aggregator().evaluate_cycle({"A": {"temp": 25.0}})
        assert result.triggered is False
        assert result.asset_results == {}

    def test_unregistered_assets_ignored(self) -> None:
        agg = _make_aggregator(("A", "temp > 20", "temp"))
        result = agg.evaluate_cycle({"A": {"temp": 25}, "Z": {"temp": 0}})
        assert result.triggered is True

    def test_non_numeric_datapoints_skipped(self) -> None:
        agg = _make_aggregator(("A", "temp > 20", "temp"))
        result = agg.evaluate_cycle(
            {"A": {"temp": 25, "label": "north", "ok": True}}
        )
        assert result.triggered is True

    def test_no_numeric_datapoints(self, caplog: pytest.LogCaptureFixture) -> None:
        agg = _make_aggregator(("A", "temp > 20", "temp"))
        with caplog.at_level(logging.WARNING):
            result = agg.evaluate_cycle({"A": {"temp": "hot"}})
        assert result.triggered is False
        assert "No numeric datapoints" in caplog.text

    def test_readings_not_an_object(self) -> None:
        agg = _make_aggregator(("A", "temp > 20", "temp"))
        result = agg.evaluate_cycle({"A": 25})
        assert result.triggered is False
        assert result.asset_results == {"A": False}

    def test_failed_evaluation_counts_as_not_fired(self) -> None:
        agg = _make_aggregator(("A", "1 / (temp - 20)", "temp"))
        result = agg.evaluate_cycle({"A": {"temp": 20}})
        assert result.triggered is False

    def test_values_persist_between_cycles(self) -> None:
        agg = _make_aggregator(("A", "temp > 20", "temp"))
        agg.evaluate_cycle({"A": {"temp": 25.0}})
        result = agg.evaluate_cycle({"A": {"pressure": 1013.0}})
        assert result.triggered is True


class TestCycleResult:
    """Tests for CycleResult.causing_assets."""

    def test_cleared_lists_non_firing_assets(self) -> None:
        result = CycleResult(
            triggered=False, asset_results={"A": True, "B": False, "C": False}
        )
        assert result.causing_assets == ["B", "C"]

    def test_triggered_lists_every_asset(self) -> None:
        result = CycleResult(triggered=True, asset_results={"A": True, "B": True})
        assert result.causing_assets == ["A", "B"]
