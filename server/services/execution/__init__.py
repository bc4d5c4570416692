"""Execution engine package.

Step-at-a-time flow execution:
- Trigger matching against active flows
- One node per invocation, cursor + step counter guarded by a lease
- Continuation dispatch in-process or over HTTP
- Delays as scheduled re-dispatch, never sleeps
- Labelled-edge branching on condition results
- Watchdog re-driving stalled executions

The coordinator, dispatchers and watchdog are imported from their own
modules; node handlers depend on this package's conditions module.
"""

from .models import (
    ExecutionStatus,
    LogStatus,
    FailurePolicy,
    NodeResult,
    StepMessage,
    AdvanceOutcome,
    RetryPolicy,
)
from .conditions import (
    get_nested_value,
    resolve_field,
    evaluate_condition,
    select_next_edge,
)

__all__ = [
    # Models
    "ExecutionStatus",
    "LogStatus",
    "FailurePolicy",
    "NodeResult",
    "StepMessage",
    "AdvanceOutcome",
    "RetryPolicy",
    # Conditions
    "get_nested_value",
    "resolve_field",
    "evaluate_condition",
    "select_next_edge",
]
