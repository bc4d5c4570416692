"""Pydantic models for node configuration with discriminated unions.

Each node type carries its own typed configuration. The flow editor stores
camelCase keys inside ``node.data`` so every field is declared with its
editor alias; validation goes through one TypeAdapter keyed on ``type``.
"""

from typing import Literal, Union, Annotated, Optional, Dict, Any

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from constants import (
    DEFAULT_AI_SYSTEM_PROMPT,
    DEFAULT_APPOINTMENT_TIME,
    DEFAULT_DELAY_MINUTES,
    EXECUTABLE_NODE_TYPES,
)


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseNodeParams(BaseModel):
    """Base class for all node parameters."""
    type: str
    label: Optional[str] = None
    description: Optional[str] = None
    on_failure: Optional[Literal["continue", "halt"]] = Field(default=None, alias="onFailure")

    model_config = {"extra": "allow", "populate_by_name": True}


# =============================================================================
# MESSAGING / CONTROL
# =============================================================================

class MessageNodeParams(BaseNodeParams):
    """Send a templated text to the triggering contact."""
    type: Literal["message"]
    message: Optional[str] = None

    @property
    def template(self) -> str:
        return self.message or self.description or ""


class DelayNodeParams(BaseNodeParams):
    """Suspend the chain for a number of minutes."""
    type: Literal["delay"]
    delay_minutes: float = Field(default=DEFAULT_DELAY_MINUTES, alias="delayMinutes", ge=0)

    @field_validator("delay_minutes", mode="before")
    @classmethod
    def default_when_empty(cls, v):
        if v in (None, "", 0, "0"):
            return DEFAULT_DELAY_MINUTES
        return v


class ConditionNodeParams(BaseNodeParams):
    """Evaluate ``field op value`` against execution state."""
    type: Literal["condition"]
    field: str = Field(default="", alias="conditionField")
    operator: Literal["equals", "not_equals", "contains", "greater_than", "less_than"] = Field(
        default="equals", alias="conditionOperator"
    )
    value: Any = Field(default=None, alias="conditionValue")


# =============================================================================
# CRM / SCHEDULING / CHECKOUT
# =============================================================================

class CrmNodeParams(BaseNodeParams):
    """Update the lead matching the triggering phone number."""
    type: Literal["crm"]
    crm_action: str = Field(default="update_stage", alias="crmAction")
    new_stage: Optional[str] = Field(default=None, alias="newStage")
    add_tags: list[str] = Field(default_factory=list, alias="addTags")
    notes: Optional[str] = None

    @field_validator("add_tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return v


class CalendarNodeParams(BaseNodeParams):
    """Book an appointment for the triggering contact."""
    type: Literal["calendar"]
    appointment_date: Optional[str] = Field(default=None, alias="appointmentDate")
    appointment_time: str = Field(default=DEFAULT_APPOINTMENT_TIME, alias="appointmentTime")


class CheckoutNodeParams(BaseNodeParams):
    """Produce a checkout link for the owner's first active service."""
    type: Literal["checkout"]


# =============================================================================
# OUTBOUND HTTP / AI
# =============================================================================

class ApiNodeParams(BaseNodeParams):
    """Single outbound HTTP call."""
    type: Literal["api"]
    url: str = Field(default="", alias="apiUrl")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = Field(default="GET", alias="apiMethod")
    headers: Dict[str, str] = Field(default_factory=dict, alias="apiHeaders")
    body: Any = Field(default=None, alias="apiBody")

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v):
        return str(v).upper() if v else "GET"


class WebhookNodeParams(BaseNodeParams):
    """Fire-and-forget POST of the execution state."""
    type: Literal["webhook"]
    url: Optional[str] = Field(default=None, alias="webhookUrl")


class AIAgentNodeParams(BaseNodeParams):
    """Ask the owner's AI provider to answer the triggering message."""
    type: Literal["ai_agent"]
    system_prompt: str = Field(default=DEFAULT_AI_SYSTEM_PROMPT, alias="systemPrompt")

    @field_validator("system_prompt", mode="before")
    @classmethod
    def default_when_blank(cls, v):
        return v or DEFAULT_AI_SYSTEM_PROMPT


# =============================================================================
# DISCRIMINATED UNION
# =============================================================================

KnownNodeParams = Annotated[
    Union[
        MessageNodeParams, DelayNodeParams, ConditionNodeParams,
        CrmNodeParams, CalendarNodeParams, CheckoutNodeParams,
        ApiNodeParams, WebhookNodeParams, AIAgentNodeParams,
    ],
    Field(discriminator="type")
]

_known_node_adapter = TypeAdapter(KnownNodeParams)


def validate_node_params(node_type: str, data: Dict[str, Any]) -> BaseNodeParams:
    """Validate a node's data bag into its typed configuration.

    Known node types go through the discriminated union and raise
    ``ValidationError`` on bad input. Unknown types fall back to
    ``BaseNodeParams`` so the executor can treat them as no-ops.
    """
    params_with_type = {**(data or {}), "type": node_type}

    if node_type in EXECUTABLE_NODE_TYPES:
        return _known_node_adapter.validate_python(params_with_type)
    return BaseNodeParams(**params_with_type)
