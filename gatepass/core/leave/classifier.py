"""Leave classification.

Derives the leave type of a request from its time window and, when given,
the category chosen by the requester:

    duration <= 1 day       -> short_leave
    1 < duration < 7 days   -> long_leave
    duration >= 7 days      -> vacation

An `academic` or `non_academic` category overrides the duration bucket.
"""

from datetime import date, datetime, time
from typing import Optional, Union

from ..exceptions import ValidationError
from ..models import LeaveCategory, LeaveType

SECONDS_PER_DAY = 24 * 60 * 60

SHORT_LEAVE_MAX_DAYS = 1
VACATION_MIN_DAYS = 7

CATEGORY_LEAVE_TYPES = {
    LeaveCategory.ACADEMIC: LeaveType.ACADEMIC,
    LeaveCategory.NON_ACADEMIC: LeaveType.NON_ACADEMIC,
}

DateLike = Union[date, datetime]


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raise ValidationError(f"Expected a date or datetime, got {type(value).__name__}")


def duration_days(from_date: DateLike, to_date: DateLike) -> float:
    """
    Length of the leave window in (fractional) days.

    Raises:
        ValidationError: If to_date is not after from_date, or the two values
            cannot be compared (naive vs. timezone-aware)
    """
    start = _as_datetime(from_date)
    end = _as_datetime(to_date)

    if (start.tzinfo is None) != (end.tzinfo is None):
        raise ValidationError("From date and to date must both include a timezone or neither")

    if end <= start:
        raise ValidationError("To date must be after from date")

    return (end - start).total_seconds() / SECONDS_PER_DAY


def classify(
    from_date: DateLike,
    to_date: DateLike,
    leave_category: Optional[Union[LeaveCategory, str]] = None,
) -> LeaveType:
    """
    Classify a leave request.

    Args:
        from_date: Start of the leave window
        to_date: End of the leave window (must be after from_date)
        leave_category: Optional requester-chosen category

    Returns:
        The leave type

    Raises:
        ValidationError: If the window is empty or inverted, or the category
            is not recognised
    """
    days = duration_days(from_date, to_date)

    if days <= SHORT_LEAVE_MAX_DAYS:
        leave_type = LeaveType.SHORT_LEAVE
    elif days < VACATION_MIN_DAYS:
        leave_type = LeaveType.LONG_LEAVE
    else:
        leave_type = LeaveType.VACATION

    if leave_category:
        try:
            category = LeaveCategory(leave_category)
        except ValueError:
            raise ValidationError(f"Unknown leave category: {leave_category}")
        leave_type = CATEGORY_LEAVE_TYPES.get(category, leave_type)

    return leave_type
