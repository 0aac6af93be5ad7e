"""
Closed value sets for the editable fields, with display labels.
"""

from enum import Enum


class Category(str, Enum):
    KIDS = "KIDS"
    ROBYN = "ROBYN"
    WORK = "WORK"
    FINANCIAL = "FINANCIAL"
    SHOPPING = "SHOPPING"
    CHURCH = "CHURCH"
    OTHER = "OTHER"


class Urgency(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ActionType(str, Enum):
    # v1 values, kept for records classified before v2
    FYI = "FYI"
    RESPOND = "RESPOND"
    TASK = "TASK"
    PAYMENT = "PAYMENT"
    CALENDAR = "CALENDAR"
    NONE = "NONE"
    # v2 values
    IGNORE = "IGNORE"
    SHIPMENT = "SHIPMENT"
    DRAFT_REPLY = "DRAFT_REPLY"
    JUNK = "JUNK"
    NOTIFY = "NOTIFY"


EDITABLE_FIELDS = ("category", "urgency", "action")

FIELD_ENUMS = {
    "category": Category,
    "urgency": Urgency,
    "action": ActionType,
}

FIELD_LABELS = {
    "category": "Category",
    "urgency": "Urgency",
    "action": "Action Type",
}

VALUE_LABELS = {
    "category": {
        "KIDS": "Kids & School",
        "ROBYN": "Robyn (Personal)",
        "WORK": "Work & Professional",
        "FINANCIAL": "Financial & Bills",
        "SHOPPING": "Shopping & Orders",
        "CHURCH": "Church & Faith",
        "OTHER": "Other",
    },
    "urgency": {
        "HIGH": "High (Immediate)",
        "MEDIUM": "Medium (This Week)",
        "LOW": "Low (Informational)",
    },
    "action": {
        "FYI": "FYI (Information Only)",
        "RESPOND": "Respond (Reply Needed)",
        "TASK": "Task (Action Item)",
        "PAYMENT": "Payment (Bill Due)",
        "CALENDAR": "Calendar",
        "NONE": "None",
        "IGNORE": "Ignore",
        "SHIPMENT": "Shipment",
        "DRAFT_REPLY": "Draft Reply",
        "JUNK": "Junk",
        "NOTIFY": "Notify",
    },
}


def allowed_values(field: str):
    """Return the allowed string values for a field (empty list for unknown fields)."""
    enum_cls = FIELD_ENUMS.get(field)
    if enum_cls is None:
        return []
    return [member.value for member in enum_cls]


def value_label(field: str, value: str) -> str:
    """Human-readable label for a field value, falling back to the raw value."""
    return VALUE_LABELS.get(field, {}).get(value, value)
