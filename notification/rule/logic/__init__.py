"""
Core evaluation logic for the SimpleExpression rule.

This package contains the variable binding table, expression compilation
and evaluation, the trigger registry, per-cycle aggregation and the rule
state machine.

Public API:
    - ``VariableBindingTable`` -- Fixed-capacity name -> float64 slots.
    - ``ExpressionEvaluator`` -- One compiled expression over one table.
    - ``TriggerRegistry`` -- Asset -> trigger, all-or-nothing replacement.
    - ``AssetEvaluationAggregator`` -- AND of all assets for one cycle.
    - ``RuleStateMachine`` -- TRIGGERED / CLEARED with last transition.
"""

from notification.rule.logic.aggregator import AssetEvaluationAggregator, CycleResult
from notification.rule.logic.bindings import VariableBindingTable, coerce_numeric
from notification.rule.logic.expression import (
    CompileError,
    EvaluationError,
    ExpressionEvaluator,
    is_triggered,
)
from notification.rule.logic.registry import ConfigError, TriggerEntry, TriggerRegistry
from notification.rule.logic.result import Err, Ok, Result
from notification.rule.logic.state import RuleStateMachine

__all__ = [
    "VariableBindingTable",
    "coerce_numeric",
    "ExpressionEvaluator",
    "CompileError",
    "EvaluationError",
    "is_triggered",
    "TriggerRegistry",
    "TriggerEntry",
    "ConfigError",
    "AssetEvaluationAggregator",
    "CycleResult",
    "RuleStateMachine",
    "Ok",
    "Err",
    "Result",
]
