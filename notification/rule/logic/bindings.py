"""
Variable binding table for a single asset's expression.

The table maps datapoint names to float64 slots in a preallocated numpy
array. Slots are assigned in insertion order and never move or get freed,
so a compiled expression that resolves names through the table always sees
the current value of the same slot.

Capacity is fixed when the table is created. Binding a new name once the
table is full is rejected with a warning; the value is simply not visible
to the expression.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

import numpy as np

from notification.rule.config import MAX_VARS_DEFAULT

logger = logging.getLogger(__name__)


def coerce_numeric(value: Any) -> float | None:
    """Convert a measurement value to float64, or None if it is not numeric.

    Floats are taken as-is, integers are widened to float. Booleans, strings,
    containers, ``None`` and integers beyond the float64 range are not
    usable measurements and yield None.

    Parameters
    ----------
    value : Any
        A decoded JSON value (or numpy scalar) from an input reading.

    Returns
    -------
    float or None
        The value as a Python float, or None when it must be skipped.
    """
    if isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (float, np.floating)):
        return float(value)
    if isinstance(value, (int, np.integer)):
        try:
            return float(value)
        except OverflowError:
            logger.warning(
                "Integer datapoint beyond float64 range (%d bits), skipping",
                int(value).bit_length(),
            )
            return None
    return None


class VariableBindingTable(Mapping[str, float]):
    """Fixed-capacity, insertion-ordered name -> float64 mapping.

    Parameters
    ----------
    capacity : int
        Maximum number of distinct variable names.
    """

    def __init__(self, capacity: int = MAX_VARS_DEFAULT) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._values = np.full(capacity, np.nan, dtype=np.float64)
        self._slots: dict[str, int] = {}

    @property
    def capacity(self) -> int:
        return int(self._values.shape[0])

    @property
    def is_full(self) -> bool:
        return len(self._slots) >= self.capacity

    def upsert(self, name: str, value: float) -> bool:
        """Bind ``name`` to ``value``, reusing its slot if already bound.

        Returns
        -------
        bool
            False if ``name`` is new and the table is full, True otherwise.
        """
        slot = self._slots.get(name)
        if slot is None:
            if self.is_full:
                logger.warning(
                    "Variable table full (%d), ignoring variable '%s'",
                    self.capacity,
                    name,
                )
                return False
            slot = len(self._slots)
            self._slots[name] = slot
        self._values[slot] = value
        return True

    def declare(self, name: str) -> bool:
        """Bind ``name`` with a NaN placeholder unless it is already bound."""
        if name in self._slots:
            return True
        return self.upsert(name, np.nan)

    def slot_of(self, name: str) -> int:
        return self._slots[name]

    def names(self) -> list[str]:
        return list(self._slots)

    def snapshot(self) -> dict[str, float]:
        """Copy of the current bindings, in slot order."""
        return {name: float(self._values[slot]) for name, slot in self._slots.items()}

    # Mapping protocol, used for symbol resolution at evaluation time.

    def __getitem__(self, name: str) -> float:
        return float(self._values[self._slots[name]])

    def __contains__(self, name: object) -> bool:
        return name in self._slots

    def __iter__(self) -> Iterator[str]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __repr__(self) -> str:
        return f"VariableBindingTable({self.snapshot()!r}, capacity={self.capacity})"
