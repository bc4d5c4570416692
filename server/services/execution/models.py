"""Execution engine state models.

Status enums, the normalised node result, the continuation message passed
between invocations, and the retry policy used by the HTTP dispatcher.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    """Execution lifecycle.

    State transitions:
        RUNNING -> COMPLETED
                -> FAILED (halted, or a node failed under the halt policy)
    """
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogStatus(str, Enum):
    """Outcome of one node step in the execution log."""
    SUCCESS = "success"
    FAILED = "failed"


class FailurePolicy(str, Enum):
    """What the coordinator does after a failed node."""
    CONTINUE = "continue"    # Log the failure and follow the next edge
    HALT = "halt"            # End the execution as failed


@dataclass
class NodeResult:
    """Normalised outcome of running one node."""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    defer_seconds: Optional[float] = None
    execution_time: float = 0.0

    @classmethod
    def from_handler(cls, result: Dict[str, Any]) -> "NodeResult":
        """Build from a handler's result dict."""
        success = bool(result.get("success"))
        data = result.get("result") if success else {}
        return cls(
            success=success,
            data=data if isinstance(data, dict) else {},
            error=None if success else (result.get("error") or "Unknown error"),
            defer_seconds=result.get("defer_seconds"),
            execution_time=result.get("execution_time", 0.0),
        )


class StepMessage(BaseModel):
    """Continuation message: run ``node_id`` as step ``step`` of an execution."""
    execution_id: str = Field(alias="executionId")
    node_id: str = Field(alias="nodeId")
    step: Optional[int] = None

    model_config = {"populate_by_name": True}


@dataclass
class AdvanceOutcome:
    """What one advance() call did."""
    applied: bool
    reason: str = ""
    status: Optional[str] = None
    next_node_id: Optional[str] = None
    step: Optional[int] = None


@dataclass
class RetryPolicy:
    """Retry configuration for continuation dispatch.

    Implements exponential backoff with configurable limits.
    Delay formula: min(initial_delay * (backoff_multiplier ^ attempt), max_delay)
    """
    max_attempts: int = 3
    initial_delay: float = 0.5       # seconds
    max_delay: float = 10.0          # seconds
    backoff_multiplier: float = 2.0
    retry_on_timeout: bool = True
    retry_on_connection_error: bool = True
    retry_on_server_error: bool = True  # 5xx responses

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next attempt
        """
        delay = self.initial_delay * (self.backoff_multiplier ** attempt)
        return min(delay, self.max_delay)

    def should_retry(self, error: str, attempt: int) -> bool:
        """Determine if a failed dispatch should be retried.

        Args:
            error: Error message from the failed attempt
            attempt: Number of attempts already made

        Returns:
            True if should retry, False otherwise
        """
        if attempt >= self.max_attempts:
            return False

        error_lower = error.lower()

        if self.retry_on_timeout and "timeout" in error_lower:
            return True
        if self.retry_on_connection_error and ("connection" in error_lower or "connect" in error_lower):
            return True
        if self.retry_on_server_error and any(code in error for code in ("500", "502", "503", "504")):
            return True

        return False
