"""
SimpleExpression notification rule plugin.

Implements the rule object used by the notification service and the
module-level entry points the service calls (``plugin_info``,
``plugin_init``, ``plugin_triggers``, ``plugin_eval``, ``plugin_reason``,
``plugin_reconfigure``, ``plugin_shutdown``).

Rule configuration (category items)::

    asset        -- asset whose readings are evaluated, e.g. "modbus"
    expression   -- expression over the asset's datapoints,
                    e.g. "if( ((humidity > 50)), 1, 0)"
    rule_config  -- JSON with the datapoints the expression uses:
                    {"datapoints": [{"name": "humidity", "type": "float"}]}

A ``triggers`` item (``[{"asset", "expression", "datapoints"}, ...]``)
configures several assets at once; the rule then fires only when every
asset fires in the same evaluation.

Key Design Decisions:
    - **All-or-nothing reconfiguration**: a configuration that fails to
      validate or compile leaves the previous triggers active.
    - **Errors stay inside evaluation**: malformed readings and failed
      expressions produce a False decision, never an exception.
    - **Locking**: configure and evaluate take the write side of the rule's
      lock (evaluation writes binding tables and state); trigger listing
      and reason take the read side.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable

from notification.rule.config import TruthinessPolicy
from notification.rule.logic.aggregator import AssetEvaluationAggregator
from notification.rule.logic.locking import ReadWriteLock
from notification.rule.logic.registry import ConfigError, TriggerRegistry
from notification.rule.logic.result import Err, Ok, Result
from notification.rule.logic.state import RuleStateMachine
from notification.rule.models import (
    PluginInformation,
    RuleConfig,
    RuleReason,
    RuleStateName,
    TriggerListing,
    TriggerRef,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Plugin Constants
# ---------------------------------------------------------------------------

RULE_NAME = "SimpleExpression"
PLUGIN_VERSION = "1.0.0"
PLUGIN_TYPE = "notificationRule"
INTERFACE_VERSION = "1.0.0"

DEFAULT_ASSET = "modbus"
DEFAULT_EXPRESSION = "if( ((humidity > 50)), 1, 0)"
DEFAULT_DESCRIPTION = "Generate a notification if all configured assets trigger"

DEFAULT_RULE_CONFIG: dict[str, Any] = {
    "asset": {
        "description": "The asset name for which notifications will be generated.",
        "name": DEFAULT_ASSET,
    },
    "datapoints": [
        {"type": "float", "name": "humidity"},
        {"type": "float", "name": "temperature"},
    ],
    "expression": {
        "description": "The expression to evaluate",
        "name": "Expression",
        "type": "string",
        "value": DEFAULT_EXPRESSION,
    },
}

DEFAULT_CONFIG: dict[str, Any] = {
    "plugin": {
        "description": f"{RULE_NAME} notification rule",
        "type": "string",
        "default": RULE_NAME,
        "readonly": "true",
    },
    "description": {
        "description": DEFAULT_DESCRIPTION,
        "type": "string",
        "default": DEFAULT_DESCRIPTION,
        "displayName": "Rule",
        "order": "1",
    },
    "rule_config": {
        "description": "The array of rules.",
        "type": "JSON",
        "default": json.dumps(DEFAULT_RULE_CONFIG),
        "displayName": "Configuration",
        "order": "2",
    },
    "asset": {
        "description": "The Asset name.",
        "type": "string",
        "default": DEFAULT_ASSET,
        "displayName": "Asset",
        "order": "3",
    },
    "expression": {
        "description": "The expression to evaluate",
        "name": "Expression",
        "type": "string",
        "default": DEFAULT_EXPRESSION,
        "displayName": "The expression to evaluate",
        "order": "4",
    },
}


# ---------------------------------------------------------------------------
# SimpleExpressionRule
# ---------------------------------------------------------------------------


class SimpleExpressionRule:
    """Rule object: trigger registry, rule state and the lock guarding them.

    Parameters
    ----------
    capacity : int or None
        Variable capacity per asset. Defaults to ``RULE_MAX_VARS``.
    policy : TruthinessPolicy or None
        Truthiness policy. Defaults to ``RULE_TRUTHINESS_POLICY``.
    clock : callable or None
        UTC clock for transition timestamps.
    """

    def __init__(
        self,
        capacity: int | None = None,
        policy: TruthinessPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = ReadWriteLock()
        self._registry = TriggerRegistry(capacity=capacity, policy=policy)
        self._aggregator = AssetEvaluationAggregator(self._registry)
        self._state = RuleStateMachine(clock=clock)
        self._description = ""

    @property
    def description(self) -> str:
        return self._description

    @property
    def state(self) -> RuleStateName:
        with self._lock.read():
            return self._state.state

    @property
    def has_triggers(self) -> bool:
        with self._lock.read():
            return len(self._registry) > 0

    def configure(
        self, config: RuleConfig | Mapping[str, Any]
    ) -> Result[None, ConfigError]:
        """Validate ``config`` and rebuild the trigger registry.

        Parameters
        ----------
        config : RuleConfig or Mapping
            A parsed ``RuleConfig`` or a raw configuration category.

        Returns
        -------
        Result[None, ConfigError]
            ``Err`` if the configuration is malformed or any trigger fails
            to build; the previous triggers then remain active.
        """
        if not isinstance(config, RuleConfig):
            try:
                config = RuleConfig.from_category(config)
            except ValueError as exc:
                error = ConfigError(f"Malformed rule configuration: {exc}")
                logger.error("%s", error)
                return Err(error)

        with self._lock.write():
            result = self._registry.replace_all(config.triggers)
            if result.ok:
                self._description = config.description
        return result

    def reconfigure(self, config: RuleConfig | Mapping[str, Any]) -> bool:
        """Apply a new configuration, keeping the old one on failure."""
        result = self.configure(config)
        if not result.ok:
            logger.error("Reconfiguration failed: %s", result.error)
            return False
        return True

    def list_triggers(self) -> TriggerListing:
        with self._lock.read():
            assets = self._registry.list_assets()
        return TriggerListing(triggers=[TriggerRef(asset=a) for a in assets])

    def evaluate(self, readings: Mapping[str, Any]) -> bool:
        """Run one evaluation cycle and update the rule state.

        Parameters
        ----------
        readings : Mapping[str, Any]
            ``{asset_name: {datapoint_name: value, ...}, ...}``.

        Returns
        -------
        bool
            True if every registered asset fired.
        """
        with self._lock.write():
            cycle = self._aggregator.evaluate_cycle(readings)
            self._state.set_state(cycle.triggered, cycle.causing_assets)
        logger.debug(
            "Cycle result=%s per-asset=%s missing=%s",
            cycle.triggered,
            cycle.asset_results,
            cycle.missing,
        )
        return cycle.triggered

    def reason(self) -> RuleReason:
        with self._lock.read():
            return self._state.get_reason()

    def shutdown(self) -> None:
        with self._lock.write():
            self._registry.clear()


# ---------------------------------------------------------------------------
# Plugin Entry Points
# ---------------------------------------------------------------------------


def plugin_info() -> PluginInformation:
    """Return the static plugin information and default configuration."""
    return PluginInformation(
        name=RULE_NAME,
        version=PLUGIN_VERSION,
        flags=0,
        type=PLUGIN_TYPE,
        interface=INTERFACE_VERSION,
        config=DEFAULT_CONFIG,
    )


def _decode_category(
    config: Mapping[str, Any] | str,
) -> Result[Mapping[str, Any], ConfigError]:
    if not isinstance(config, str):
        return Ok(config)
    try:
        decoded = json.loads(config)
    except ValueError as exc:
        return Err(ConfigError(f"Configuration is not valid JSON: {exc}"))
    if not isinstance(decoded, Mapping):
        return Err(ConfigError("Configuration must be a JSON object"))
    return Ok(decoded)


def plugin_init(
    config: Mapping[str, Any] | str, **kwargs: Any
) -> SimpleExpressionRule | None:
    """Create and configure a rule; None if the configuration is rejected.

    Extra keyword arguments are passed to ``SimpleExpressionRule``.
    """
    decoded = _decode_category(config)
    if not decoded.ok:
        logger.error("plugin_init failed: %s", decoded.error)
        return None

    rule = SimpleExpressionRule(**kwargs)
    result = rule.configure(decoded.value)
    if not result.ok:
        logger.info("plugin_init failed: %s", result.error)
        return None
    return rule


def plugin_shutdown(handle: SimpleExpressionRule) -> None:
    handle.shutdown()


def plugin_triggers(handle: SimpleExpressionRule) -> str:
    """Return ``{"triggers": [{"asset": ...}, ...]}`` as JSON."""
    ret = handle.list_triggers().model_dump_json()
    logger.debug("plugin_triggers(): ret=%s", ret)
    return ret


def plugin_eval(handle: SimpleExpressionRule, asset_values: str) -> bool:
    """Evaluate a JSON document of readings keyed by asset name.

    A document that is not valid JSON, or not an object, is not evaluated
    and leaves the rule state untouched.
    """
    logger.debug("plugin_eval(): assetValues=%s", asset_values)
    try:
        readings = json.loads(asset_values)
    except ValueError:
        logger.warning("plugin_eval(): ignoring malformed readings %.500s", asset_values)
        return False
    if not isinstance(readings, Mapping):
        logger.warning("plugin_eval(): readings must be a JSON object")
        return False
    return handle.evaluate(readings)


def plugin_reason(handle: SimpleExpressionRule) -> str:
    """Return the reason payload as JSON."""
    ret = handle.reason().model_dump_json()
    logger.debug("plugin_reason(): ret=%s", ret)
    return ret


def plugin_reconfigure(
    handle: SimpleExpressionRule, new_config: Mapping[str, Any] | str
) -> bool:
    """Reconfigure from a category (or its JSON); False keeps the old config."""
    decoded = _decode_category(new_config)
    if not decoded.ok:
        logger.error("plugin_reconfigure failed: %s", decoded.error)
        return False
    return handle.reconfigure(decoded.value)
