"""Input payloads for the exposed operations.

Callers may send camelCase (as the mobile clients do) or snake_case keys.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError
from .models import Decision, LeaveCategory

PayloadT = TypeVar("PayloadT", bound=BaseModel)

MAX_COMMENT_LENGTH = 500


class LeaveRequestCreate(BaseModel):
    """Payload of a new leave request."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    purpose: str = Field(min_length=5, max_length=200)
    destination: str = Field(min_length=3, max_length=100)
    from_date: datetime
    to_date: datetime
    out_time: str = Field(min_length=1)
    in_time: str = Field(min_length=1)
    leave_category: Optional[LeaveCategory] = None

    prn: str = Field(min_length=1)
    student_email: EmailStr
    student_phone: str = Field(min_length=1)

    father_name: str = Field(min_length=1)
    father_email: EmailStr
    father_phone: str = Field(min_length=1)
    mother_name: str = Field(min_length=1)
    mother_email: EmailStr
    mother_phone: str = Field(min_length=1)

    @field_validator("leave_category", mode="before")
    @classmethod
    def _blank_category_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _window_is_ordered(self) -> "LeaveRequestCreate":
        if (self.from_date.tzinfo is None) != (self.to_date.tzinfo is None):
            raise ValueError("From date and to date must both include a timezone or neither")
        if self.to_date <= self.from_date:
            raise ValueError("To date must be after from date")
        return self


class DecisionRequest(BaseModel):
    """Payload of an approve/reject action."""

    model_config = ConfigDict(str_strip_whitespace=True)

    decision: Decision
    comments: Optional[str] = Field(default=None, max_length=MAX_COMMENT_LENGTH)

    @field_validator("decision")
    @classmethod
    def _decidable(cls, value: Decision) -> Decision:
        if value not in (Decision.APPROVED, Decision.REJECTED):
            raise ValueError("Decision must be either approved or rejected")
        return value


def _field_messages(error: PydanticValidationError) -> Dict[str, str]:
    messages = {}
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        messages[location] = item.get("msg", "invalid value")
    return messages


def parse_payload(model: Type[PayloadT], payload: Any) -> PayloadT:
    """
    Validate a raw payload against a schema.

    Raises:
        ValidationError: With one message per invalid field
    """
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError(f"Expected an object payload, got {type(payload).__name__}")

    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as e:
        messages = _field_messages(e)
        summary = "; ".join(f"{field}: {msg}" for field, msg in messages.items())
        raise ValidationError(f"Validation error: {summary}", details=messages)
