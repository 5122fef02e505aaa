"""
Domain models for the SimpleExpression rule.

Pydantic v2 models for the configuration category delivered by the
notification service and for the JSON documents the rule hands back
(trigger listing, reason, plugin information).

The host hands configuration items over in two shapes: a flat value
(``{"asset": "modbus"}``) or a category item carrying its value
(``{"asset": {"value": "modbus", "type": "string", ...}}``). JSON typed items
such as ``rule_config`` may additionally arrive as an encoded string.
``RuleConfig.from_category`` accepts all of these.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DatapointType(str, Enum):
    """Datapoint types a rule configuration may declare."""

    INTEGER = "integer"
    FLOAT = "float"


class RuleStateName(str, Enum):
    """Externally visible rule state, as rendered in the reason payload."""

    TRIGGERED = "triggered"
    CLEARED = "cleared"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class DatapointSpec(BaseModel):
    """A declared datapoint: ``{"name": "humidity", "type": "float"}``.

    ``type`` is kept as a raw string so that unsupported types can be logged
    and skipped instead of failing the whole configuration.
    """

    model_config = {"populate_by_name": True}

    name: str
    type: str = ""

    @property
    def is_supported(self) -> bool:
        return self.type in {t.value for t in DatapointType}


class TriggerConfig(BaseModel):
    """Configuration of a single asset trigger."""

    model_config = {"populate_by_name": True}

    asset: str = ""
    expression: str = ""
    datapoints: list[DatapointSpec] = []

    @field_validator("datapoints", mode="before")
    @classmethod
    def _drop_unnamed(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = json.loads(value) if value.strip() else []
        if not isinstance(value, list):
            return value
        kept = []
        for item in value:
            if isinstance(item, Mapping) and "name" in item:
                kept.append(item)
            else:
                logger.info("Ignoring datapoint entry without a name: %r", item)
        return kept

    def valid_datapoints(self) -> list[DatapointSpec]:
        """Declared datapoints with a supported type, in declaration order."""
        valid: list[DatapointSpec] = []
        for dp in self.datapoints:
            if dp.is_supported:
                valid.append(dp)
            else:
                logger.info(
                    "Cannot handle datapoint: name=%s, type=%s, skipping...",
                    dp.name,
                    dp.type,
                )
        return valid


def _item_value(raw: Any) -> Any:
    """Unwrap a configuration category item to its value."""
    if isinstance(raw, Mapping):
        if "value" in raw:
            return raw["value"]
        if "default" in raw:
            return raw["default"]
    return raw


def _json_item(raw: Any) -> Any:
    """Unwrap an item whose value is JSON, decoding it when it is a string."""
    value = _item_value(raw)
    if isinstance(value, str):
        return json.loads(value) if value.strip() else None
    return value


class RuleConfig(BaseModel):
    """Complete rule configuration: one trigger per asset.

    All triggers must fire in the same cycle for the rule to trigger.
    """

    model_config = {"populate_by_name": True}

    description: str = ""
    triggers: list[TriggerConfig] = []

    @classmethod
    def from_category(cls, values: Mapping[str, Any]) -> RuleConfig:
        """Build a ``RuleConfig`` from a host configuration category.

        Raises
        ------
        ValueError
            If a JSON item cannot be decoded (``json.JSONDecodeError``) or the
            decoded content does not validate (``pydantic.ValidationError``).
        """
        description = _item_value(values.get("description", "")) or ""

        if "triggers" in values:
            triggers = _json_item(values["triggers"]) or []
            return cls.model_validate(
                {"description": description, "triggers": triggers}
            )

        datapoints: Any = []
        if "datapoints" in values:
            datapoints = _json_item(values["datapoints"]) or []
        elif "rule_config" in values:
            rule_config = _json_item(values["rule_config"]) or {}
            if not isinstance(rule_config, Mapping):
                raise ValueError("rule_config must be a JSON object")
            datapoints = rule_config.get("datapoints", [])

        trigger = TriggerConfig.model_validate(
            {
                "asset": _item_value(values.get("asset", "")) or "",
                "expression": _item_value(values.get("expression", "")) or "",
                "datapoints": datapoints,
            }
        )
        return cls(description=description, triggers=[trigger])


# ---------------------------------------------------------------------------
# Output documents
# ---------------------------------------------------------------------------


class TriggerRef(BaseModel):
    """One entry of the trigger listing."""

    asset: str


class TriggerListing(BaseModel):
    """``{"triggers": [{"asset": "modbus"}, ...]}``"""

    triggers: list[TriggerRef] = []


class RuleReason(BaseModel):
    """Reason payload returned to the notification service.

    ``asset`` holds the assets that caused the last transition: every
    configured asset when ``reason`` is ``triggered``, and the assets that
    did not fire (absent, non-numeric or evaluating false) when it is
    ``cleared``. It is empty until the first transition. ``timestamp`` is
    the UTC time of that transition.
    """

    reason: RuleStateName
    asset: list[str] = []
    timestamp: str


class PluginInformation(BaseModel):
    """Static plugin description returned by ``plugin_info``."""

    name: str
    version: str
    flags: int = 0
    type: str
    interface: str
    config: dict[str, Any]
