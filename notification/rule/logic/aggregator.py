"""
Per-cycle evaluation across all registered assets.

One evaluation cycle receives a batch of readings keyed by asset name. For
each registered trigger the asset's numeric datapoints are bound into that
trigger's variable table and the expression is checked.

Aggregation:
    The rule fires only if every registered asset fires. An asset that is
    missing from the batch, has no numeric datapoints, or fails to evaluate
    counts as not fired. Every registered asset is still evaluated so that
    each table always holds the latest values it was sent.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from notification.rule.logic.bindings import VariableBindingTable, coerce_numeric
from notification.rule.logic.registry import TriggerRegistry

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one evaluation cycle.

    ``asset_results`` is in registry order; ``missing`` lists registered
    assets absent from the batch.
    """

    triggered: bool
    asset_results: dict[str, bool] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    @property
    def causing_assets(self) -> list[str]:
        """Assets responsible for the decision.

        When triggered, every registered asset contributed; otherwise the
        assets that did not fire.
        """
        if self.triggered:
            return list(self.asset_results)
        return [asset for asset, fired in self.asset_results.items() if not fired]


def bind_datapoints(
    table: VariableBindingTable, datapoints: Mapping[str, Any]
) -> int:
    """Bind every numeric datapoint into ``table``.

    Returns
    -------
    int
        Number of numeric datapoints found (including any rejected because
        the table is full).
    """
    numeric = 0
    for name, raw in datapoints.items():
        value = coerce_numeric(raw)
        if value is None:
            logger.debug("Skipping non-numeric datapoint %s=%r", name, raw)
            continue
        numeric += 1
        table.upsert(name, value)
    return numeric


class AssetEvaluationAggregator:
    """Evaluates a batch of readings against every registered trigger."""

    def __init__(self, registry: TriggerRegistry) -> None:
        self._registry = registry

    def evaluate_cycle(self, readings: Mapping[str, Any]) -> CycleResult:
        """Run one cycle and AND the per-asset results together.

        Parameters
        ----------
        readings : Mapping[str, Any]
            ``{asset_name: {datapoint_name: value, ...}, ...}``.

        Returns
        -------
        CycleResult
            ``triggered`` is False when no triggers are registered.
        """
        result = CycleResult(triggered=len(self._registry) > 0)

        for entry in self._registry:
            if entry.asset not in readings:
                logger.debug("Asset '%s' not present in readings", entry.asset)
                result.missing.append(entry.asset)
                result.asset_results[entry.asset] = False
                result.triggered = False
                continue

            datapoints = readings[entry.asset]
            fired = False
            if not isinstance(datapoints, Mapping):
                logger.warning(
                    "Readings for asset '%s' are not an object: %r",
                    entry.asset,
                    datapoints,
                )
            elif bind_datapoints(entry.evaluator.table, datapoints) == 0:
                logger.warning(
                    "No numeric datapoints for asset '%s', not evaluating",
                    entry.asset,
                )
            else:
                fired = entry.evaluator.check()
                logger.debug(
                    "Asset '%s' evaluated to %s", entry.asset, fired
                )

            result.asset_results[entry.asset] = fired
            result.triggered = result.triggered and fired

        return result
