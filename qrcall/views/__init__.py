from .health import health
from .token import token
from .qr import qr_info
from .webhook import masked_webhook
from .calls import (
    call_initiate,
    call_answer,
    call_reject,
    call_end,
    call_status,
    call_detail,
    call_history,
    call_methods,
    call_timeout_sweep,
)

__all__ = [
    "health",
    "token",
    "qr_info",
    "masked_webhook",
    "call_initiate",
    "call_answer",
    "call_reject",
    "call_end",
    "call_status",
    "call_detail",
    "call_history",
    "call_methods",
    "call_timeout_sweep",
]
