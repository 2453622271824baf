"""
Recurrence Module

Pure calendar math for obligation due dates. Month-based periods clamp the
day of month to the target month's length, always starting again from the
original start day so a 31st keeps coming back after short months.
"""

from datetime import date, timedelta
from enum import Enum
from typing import List, Union
import calendar

from .errors import ValidationError


class Frequency(Enum):
    """Recurrence frequencies for obligations"""
    ONE_TIME = "ONE_TIME"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    YEARLY = "YEARLY"
    REPEAT = "REPEAT"      # Fixed number of monthly firings


# Period length in months; WEEKLY and ONE_TIME are handled separately
_PERIOD_MONTHS = {
    Frequency.MONTHLY: 1,
    Frequency.REPEAT: 1,
    Frequency.QUARTERLY: 3,
    Frequency.SEMIANNUAL: 6,
    Frequency.YEARLY: 12,
}


def parse_frequency(value: Union[str, Frequency]) -> Frequency:
    """Parse a frequency name case-insensitively"""
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unsupported frequency: {value}")


def add_months(start_date: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month"""
    return _month_with_day(start_date.year, start_date.month, months, start_date.day)


def _month_with_day(year: int, month: int, months: int, day: int) -> date:
    month_index = month - 1 + months
    year = year + month_index // 12
    month = month_index % 12 + 1
    day = min(day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class RecurrenceEngine:
    """Due-date calculations for every supported frequency"""

    def next_due_date(self, start_date: date, frequency: Union[str, Frequency], as_of: date) -> date:
        """
        First due date of an obligation evaluated on ``as_of``

        This is always the start date, for every frequency: a past start is
        due at once and a future one waits. ``as_of`` does not move it.
        Raises ValidationError for an unknown frequency.
        """
        parse_frequency(frequency)
        return start_date

    def next_due_date_after_firing(self, start_date: date, frequency: Union[str, Frequency],
                                   last_due_date: date) -> date:
        """
        Advance exactly one period from ``last_due_date``

        Month-based frequencies clamp to ``min(start_date.day, days in month)``
        so the original day is restored once a long enough month comes round.
        """
        frequency = parse_frequency(frequency)
        if frequency == Frequency.ONE_TIME:
            raise ValidationError("One-time obligations do not recur")
        if frequency == Frequency.WEEKLY:
            return last_due_date + timedelta(days=7)

        months = _PERIOD_MONTHS[frequency]
        return _month_with_day(last_due_date.year, last_due_date.month, months, start_date.day)

    def next_n_occurrences(self, start_date: date, frequency: Union[str, Frequency], n: int,
                           as_of: date) -> List[date]:
        """
        Upcoming ``n`` due dates on or after ``as_of``

        Starts from ``next_due_date`` and applies the firing advance rule, so
        calling it again with the same arguments yields the same list.
        """
        frequency = parse_frequency(frequency)
        if not isinstance(n, int) or n < 1:
            raise ValidationError("Occurrence count must be a positive integer")

        current = self.next_due_date(start_date, frequency, as_of)
        if frequency == Frequency.ONE_TIME:
            return [current] if current >= as_of else []

        while current < as_of:
            current = self.next_due_date_after_firing(start_date, frequency, current)

        occurrences = []
        while len(occurrences) < n:
            occurrences.append(current)
            current = self.next_due_date_after_firing(start_date, frequency, current)
        return occurrences
