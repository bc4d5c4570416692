"""Node handlers package.

This package contains all node execution handlers organized by category:
- whatsapp.py: Message
- utility.py: Delay, Condition
- crm.py: CRM lead update
- calendar.py: Calendar booking, Checkout link
- http.py: API request, Webhook
- ai.py: AI Agent
"""

# Messaging handlers
from .whatsapp import (
    handle_message,
)

# Flow control handlers
from .utility import (
    handle_delay,
    handle_condition,
)

# CRM handlers
from .crm import (
    handle_crm,
)

# Scheduling handlers
from .calendar import (
    handle_calendar,
    handle_checkout,
)

# HTTP handlers
from .http import (
    handle_api_request,
    handle_webhook,
)

# AI handlers
from .ai import (
    handle_ai_agent,
)

__all__ = [
    'handle_message',
    'handle_delay',
    'handle_condition',
    'handle_crm',
    'handle_calendar',
    'handle_checkout',
    'handle_api_request',
    'handle_webhook',
    'handle_ai_agent',
]
