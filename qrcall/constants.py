DEFAULT_TOKEN_EXPIRE_SECONDS = 86400
MAX_TOKEN_EXPIRE_SECONDS = 86400

ROLE_PUBLISHER = 1
ROLE_SUBSCRIBER = 2

# Call status
STATUS_INITIATED = "initiated"
STATUS_RINGING = "ringing"
STATUS_ANSWERED = "answered"
STATUS_REJECTED = "rejected"
STATUS_ENDED = "ended"
STATUS_MISSED = "missed"
STATUS_FAILED = "failed"

CALL_STATUSES = (
    STATUS_INITIATED,
    STATUS_RINGING,
    STATUS_ANSWERED,
    STATUS_REJECTED,
    STATUS_ENDED,
    STATUS_MISSED,
    STATUS_FAILED,
)
TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_ENDED, STATUS_MISSED, STATUS_FAILED})

CALL_TYPES = ("audio", "video")

METHOD_DIRECT = "direct"
METHOD_MASKED = "masked"
CALL_METHODS = (METHOD_DIRECT, METHOD_MASKED)

EMERGENCY_GENERAL = "general"
EMERGENCY_TYPES = ("accident", "breakdown", "theft", "medical", EMERGENCY_GENERAL)
URGENCY_LEVELS = ("low", "medium", "high", "critical")
HIGH_URGENCY_LEVELS = frozenset({"high", "critical"})

# QR / device lifecycle
QR_AVAILABLE = "available"
QR_LINKED = "linked"
QR_SUSPENDED = "suspended"
QR_DAMAGED = "damaged"

DEVICE_ACTIVE = "active"

# Firestore collections
QR_CODES_COLLECTION = "qrCodes"
DEVICES_COLLECTION = "devices"
USERS_COLLECTION = "users"
CALLS_COLLECTION = "calls"

# Real-time events
EVENT_INCOMING_CALL = "incoming-call"
EVENT_CALL_ACCEPTED = "call-accepted"
EVENT_CALL_REJECTED = "call-rejected"
EVENT_CALL_ENDED = "call-ended"
EVENT_MASKED_CALL_UPDATE = "masked-call-update"
EVENT_EMERGENCY_ALERT = "emergency-alert"

ANONYMOUS_CALLER_NAME = "Anonymous Caller"
PUBLIC_OWNER_NAME = "Vehicle Owner"

CALLER_INFO_LIMITS = {
    "name": 100,
    "phone": 20,
    "location": 200,
    "description": 500,
    "additionalInfo": 500,
}
