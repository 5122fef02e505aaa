"""
Trigger registry: asset name -> compiled trigger.

The registry is rebuilt wholesale on every (re)configuration. New triggers
are built and compiled off to the side; only if every one of them succeeds
is the new mapping swapped in. A failed rebuild leaves the previous triggers
active and reports every failing asset in a single ``ConfigError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from notification.rule.config import (
    MAX_VARS_DEFAULT,
    TruthinessPolicy,
    load_settings,
)
from notification.rule.logic.expression import ExpressionEvaluator
from notification.rule.logic.result import Err, Ok, Result
from notification.rule.models import DatapointSpec, TriggerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerFailure:
    """Why one trigger could not be built."""

    asset: str
    expression: str
    reason: str

    def __str__(self) -> str:
        return f"asset={self.asset!r} expression={self.expression!r}: {self.reason}"


class ConfigError(Exception):
    """The rule configuration cannot be applied.

    Parameters
    ----------
    message : str
        Summary of the failure.
    failures : Sequence[TriggerFailure]
        Per-trigger failures, empty for failures that are not tied to a
        single trigger (malformed JSON, missing keys).
    """

    def __init__(
        self,
        message: str,
        failures: Sequence[TriggerFailure] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.failures = list(failures)

    def __str__(self) -> str:
        if not self.failures:
            return self.message
        details = "; ".join(str(f) for f in self.failures)
        return f"{self.message}: {details}"


@dataclass
class TriggerEntry:
    """A registered asset with its own evaluator and binding table."""

    asset: str
    evaluator: ExpressionEvaluator
    datapoints: list[DatapointSpec] = field(default_factory=list)

    @property
    def expression(self) -> str:
        return self.evaluator.expression


def build_entry(
    config: TriggerConfig,
    capacity: int = MAX_VARS_DEFAULT,
    policy: TruthinessPolicy | None = None,
) -> Result[TriggerEntry, TriggerFailure]:
    """Validate one trigger configuration and compile its expression."""

    def fail(reason: str) -> Err[TriggerFailure]:  # type: ignore[type-var]
        return Err(TriggerFailure(config.asset, config.expression, reason))

    if not config.asset.strip():
        return fail("asset name is empty")
    if not config.expression.strip():
        return fail("expression is empty")

    datapoints = config.valid_datapoints()
    if not datapoints:
        logger.info(
            "Couldn't find any valid datapoint for asset '%s'", config.asset
        )
        return fail("no valid datapoints declared")

    built = ExpressionEvaluator.build(
        [dp.name for dp in datapoints],
        config.expression,
        capacity=capacity,
        policy=policy,
    )
    if not built.ok:
        return fail(built.error.message)

    return Ok(TriggerEntry(config.asset, built.value, datapoints))


class TriggerRegistry:
    """Insertion-ordered mapping of asset name to ``TriggerEntry``.

    Parameters
    ----------
    capacity : int or None
        Variable capacity of each trigger's binding table. Defaults to the
        configured ``RULE_MAX_VARS``.
    policy : TruthinessPolicy or None
        Truthiness policy for every trigger. Defaults to the configured
        ``RULE_TRUTHINESS_POLICY``.
    """

    def __init__(
        self,
        capacity: int | None = None,
        policy: TruthinessPolicy | None = None,
    ) -> None:
        if capacity is None:
            capacity = load_settings().max_vars
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if policy is None:
            policy = load_settings().truthiness_policy
        self._capacity = capacity
        self._policy = policy
        self._entries: dict[str, TriggerEntry] = {}

    def replace_all(
        self, configs: Sequence[TriggerConfig]
    ) -> Result[None, ConfigError]:
        """Replace every trigger, or none of them."""
        if not configs:
            return Err(ConfigError("No triggers configured"))

        built: dict[str, TriggerEntry] = {}
        failures: list[TriggerFailure] = []
        seen: set[str] = set()

        for config in configs:
            if config.asset in seen:
                failures.append(
                    TriggerFailure(
                        config.asset, config.expression, "duplicate asset name"
                    )
                )
                continue
            seen.add(config.asset)
            result = build_entry(config, self._capacity, self._policy)
            if result.ok:
                built[config.asset] = result.value
            else:
                failures.append(result.error)

        if failures:
            error = ConfigError("Trigger configuration rejected", failures)
            logger.error("%s; keeping %d existing trigger(s)", error, len(self))
            return Err(error)

        previous = list(self._entries)
        self._entries = built
        logger.info(
            "Replaced triggers %s with %s", previous, list(self._entries)
        )
        return Ok()

    def list_assets(self) -> list[str]:
        return list(self._entries)

    def get(self, asset: str) -> TriggerEntry | None:
        return self._entries.get(asset)

    def entries(self) -> list[TriggerEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries = {}

    def __contains__(self, asset: object) -> bool:
        return asset in self._entries

    def __iter__(self) -> Iterator[TriggerEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
