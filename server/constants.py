"""Centralized constants for automation node types, triggers and events.

Single source of truth for the node type strings stored in flow definitions,
so handlers, validation models and the coordinator never drift apart.
"""

from typing import Dict, FrozenSet

# =============================================================================
# NODE TYPES
# =============================================================================

TRIGGER_NODE_TYPE = 'trigger'

MESSAGE_NODE_TYPE = 'message'
DELAY_NODE_TYPE = 'delay'
CONDITION_NODE_TYPE = 'condition'
CRM_NODE_TYPE = 'crm'
CALENDAR_NODE_TYPE = 'calendar'
CHECKOUT_NODE_TYPE = 'checkout'
API_NODE_TYPE = 'api'
WEBHOOK_NODE_TYPE = 'webhook'
AI_AGENT_NODE_TYPE = 'ai_agent'

EXECUTABLE_NODE_TYPES: FrozenSet[str] = frozenset([
    MESSAGE_NODE_TYPE,
    DELAY_NODE_TYPE,
    CONDITION_NODE_TYPE,
    CRM_NODE_TYPE,
    CALENDAR_NODE_TYPE,
    CHECKOUT_NODE_TYPE,
    API_NODE_TYPE,
    WEBHOOK_NODE_TYPE,
    AI_AGENT_NODE_TYPE,
])

# =============================================================================
# TRIGGERS
# =============================================================================

KEYWORD_TRIGGER = 'keyword'
EVENT_TRIGGER = 'event'
WEBHOOK_TRIGGER = 'webhook'

# Business events published by the scheduling and payment areas, mapped to
# the trigger type that handles them. Anything else is acknowledged and ignored.
BUSINESS_EVENT_TRIGGERS: Dict[str, str] = {
    'appointment_created': EVENT_TRIGGER,
    'appointment_confirmed': EVENT_TRIGGER,
    'appointment_cancelled': EVENT_TRIGGER,
    'payment_approved': EVENT_TRIGGER,
    'payment_pending': EVENT_TRIGGER,
    'payment_refunded': EVENT_TRIGGER,
}

# =============================================================================
# NODE DEFAULTS
# =============================================================================

DEFAULT_DELAY_MINUTES = 1
DEFAULT_APPOINTMENT_TIME = "10:00"
DEFAULT_APPOINTMENT_STATUS = "pending"
DEFAULT_CLIENT_NAME = "Cliente via Automação"
DEFAULT_AI_SYSTEM_PROMPT = "Você é um assistente útil."
DEFAULT_AI_MODEL = "gpt-4o-mini"

# Edge selectors understood by the coordinator after a condition node
CONDITION_RESULT_KEY = 'conditionResult'
TRUE_SELECTORS: FrozenSet[str] = frozenset(['true', 'yes', 'sim'])
FALSE_SELECTORS: FrozenSet[str] = frozenset(['false', 'no', 'nao', 'não'])
