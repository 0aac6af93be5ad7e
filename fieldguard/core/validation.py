"""
Validation boundary for editable fields.
Values outside the closed enumerations are rejected here, before the merge or
write path ever sees them.
"""

from typing import Dict, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .enums import EDITABLE_FIELDS, FIELD_ENUMS, ActionType, Category, Urgency, allowed_values
from .errors import ValidationFailure


class EditableFields(BaseModel):
    model_config = ConfigDict(use_enum_values=True, extra="forbid")

    category: Category
    urgency: Urgency
    action: ActionType

    @field_validator('category', 'urgency', 'action', mode='before')
    @classmethod
    def strip_and_upper(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in EDITABLE_FIELDS}


def normalize_value(value: object) -> object:
    """Normalize a raw value the way the model does (strip, upper-case)."""
    if isinstance(value, str):
        return value.strip().upper()
    return value


def validate_field_value(field: str, value: object) -> str:
    """Validate one field value and return its canonical string form."""
    enum_cls = FIELD_ENUMS.get(field)
    if enum_cls is None:
        raise ValidationFailure(field, value)

    normalized = normalize_value(value)
    try:
        return enum_cls(normalized).value
    except ValueError:
        raise ValidationFailure(field, value, allowed_values(field)) from None


def validate_fields(data: Mapping[str, object]) -> Dict[str, str]:
    """Validate a complete EditableFields mapping."""
    try:
        return EditableFields.model_validate(dict(data)).to_dict()
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else "unknown"
        raise ValidationFailure(field, first.get("input"), allowed_values(field)) from e


def validate_partial(changes: Mapping[str, object]) -> Dict[str, str]:
    """Validate a partial mapping of field changes."""
    return {field: validate_field_value(field, value) for field, value in changes.items()}
