"""
Window Calculator - Post-incident treatment deadlines

Responsibilities:
- Parse incident date/time input (rejecting anything unparseable)
- Compute the 72-hour PEP and 120-hour EC windows against a given 'now'
- Classify PEP urgency from elapsed time
- Read incident inputs out of a form document

Design principles:
- Pure functions: 'now' is always passed in, nothing reads the clock
- Urgency depends on elapsed time only, never on the administered flags
- Invalid input raises InvalidTimeInput at the boundary

Tiers (hours elapsed since incident, PEP deadline):
    warning   0 - 24   (inclusive)
    urgent    > 24 - 48
    critical  > 48 - 72
    expired   > 72
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Union

from caseforms.contracts import (
    DeadlineWindow,
    FormVariant,
    IncidentInputs,
    TimeCriticalWindows,
    UrgencyTier,
)
from caseforms.core.path_merge import lookup
from caseforms.errors import InvalidTimeInput

logger = logging.getLogger(__name__)

DEADLINE_HOURS = {
    'pep': 72,
    'ec': 120,
}

# Upper bound (inclusive) of hours elapsed for each tier, in order
URGENCY_THRESHOLDS = (
    (24, UrgencyTier.WARNING),
    (48, UrgencyTier.URGENT),
    (72, UrgencyTier.CRITICAL),
)

_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')

DateInput = Union[str, date, datetime]


def parse_incident_time(incident_time: str) -> time:
    """
    Parse 'HH:MM' or 'HH:MM:SS' (24-hour clock).

    Raises:
        InvalidTimeInput: If the text is not a valid time of day
    """
    if not isinstance(incident_time, str):
        raise InvalidTimeInput(incident_time, "time of day must be an 'HH:MM' string")

    match = _TIME_PATTERN.match(incident_time.strip())
    if not match:
        raise InvalidTimeInput(incident_time, "expected 'HH:MM' or 'HH:MM:SS'")

    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise InvalidTimeInput(incident_time, "time of day out of range")
    return time(hour, minute, second)


def parse_incident_datetime(incident_date: DateInput, incident_time: Optional[str] = None) -> datetime:
    """
    Combine incident date and optional time of day into a timestamp.

    If no time of day is given, midnight is assumed.

    Args:
        incident_date: ISO-8601 date or datetime string, date or datetime
        incident_time: Optional 'HH:MM' / 'HH:MM:SS' (overrides any time
            already carried by incident_date)

    Returns:
        datetime: Naive or aware, as given

    Raises:
        InvalidTimeInput: If either input cannot be parsed
    """
    if isinstance(incident_date, datetime):
        parsed = incident_date
    elif isinstance(incident_date, date):
        parsed = datetime.combine(incident_date, time.min)
    elif isinstance(incident_date, str):
        text = incident_date.strip()
        if not text:
            raise InvalidTimeInput(incident_date, "incident date is empty")
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError as e:
            raise InvalidTimeInput(incident_date, str(e)) from e
    else:
        raise InvalidTimeInput(incident_date, "incident date must be an ISO-8601 string, date or datetime")

    if incident_time:
        tod = parse_incident_time(incident_time)
        parsed = parsed.replace(hour=tod.hour, minute=tod.minute, second=tod.second, microsecond=0)

    return parsed


def classify_urgency(hours_elapsed: float) -> UrgencyTier:
    """
    PEP urgency tier for hours elapsed (boundaries inclusive).

    Negative elapsed time (incident in the future) is 'warning'.
    """
    for upper, tier in URGENCY_THRESHOLDS:
        if hours_elapsed <= upper:
            return tier
    return UrgencyTier.EXPIRED


def _add_real_hours(moment: datetime, hours: float) -> datetime:
    """Add elapsed hours, stepping through UTC so DST shifts are counted"""
    if moment.tzinfo is None:
        return moment + timedelta(hours=hours)
    shifted = moment.astimezone(timezone.utc) + timedelta(hours=hours)
    return shifted.astimezone(moment.tzinfo)


def _deadline_window(name: str, incident_at: datetime, hours_elapsed: float) -> DeadlineWindow:
    deadline_hours = DEADLINE_HOURS[name]
    return DeadlineWindow(
        name=name,
        deadline_hours=deadline_hours,
        hours_remaining=max(0.0, deadline_hours - hours_elapsed),
        deadline=_add_real_hours(incident_at, deadline_hours),
        within_window=hours_elapsed <= deadline_hours,
    )


def compute_windows(
    incident_date: DateInput,
    now: datetime,
    pep_administered: bool = False,
    ec_administered: bool = False,
    incident_time: Optional[str] = None,
) -> TimeCriticalWindows:
    """
    Compute PEP and EC windows for an incident.

    Args:
        incident_date: Incident date (see parse_incident_datetime)
        now: Current timestamp. A naive incident is read in now's
            timezone; a naive now against an aware incident is rejected.
        pep_administered: Carried through for display only
        ec_administered: Carried through for display only
        incident_time: Optional 'HH:MM' time of day

    Returns:
        TimeCriticalWindows

    Raises:
        InvalidTimeInput: If the incident input is unparseable or the
            timezones cannot be reconciled
    """
    if not isinstance(now, datetime):
        raise InvalidTimeInput(now, "'now' must be a datetime")

    incident_at = parse_incident_datetime(incident_date, incident_time)

    if incident_at.tzinfo is None and now.tzinfo is not None:
        incident_at = incident_at.replace(tzinfo=now.tzinfo)
    elif incident_at.tzinfo is not None and now.tzinfo is None:
        raise InvalidTimeInput(incident_date, "incident time is timezone-aware but 'now' is naive")

    if incident_at.tzinfo is None:
        delta = now - incident_at
    else:
        # Same-tzinfo subtraction ignores UTC offset changes
        delta = now.astimezone(timezone.utc) - incident_at.astimezone(timezone.utc)
    hours_elapsed = delta.total_seconds() / 3600
    if hours_elapsed < 0:
        logger.warning(f"Incident time {incident_at.isoformat()} is in the future ({-hours_elapsed:.1f}h ahead)")

    return TimeCriticalWindows(
        incident_at=incident_at,
        computed_at=now,
        hours_elapsed=hours_elapsed,
        pep=_deadline_window('pep', incident_at, hours_elapsed),
        ec=_deadline_window('ec', incident_at, hours_elapsed),
        urgency=classify_urgency(hours_elapsed),
        pep_administered=bool(pep_administered),
        ec_administered=bool(ec_administered),
    )


# ========================
# Reading inputs from documents
# ========================

def _twelve_hour_to_24(hour: Any, minute: Any, period: Any) -> Optional[str]:
    """
    Convert a PRC clock object to 'HH:MM'.

    Returns None when hour or minute is blank. Values that are not
    numbers are passed through so parsing reports them.
    """
    hour_text = str(hour or '').strip()
    minute_text = str(minute or '').strip()
    if not hour_text or not minute_text:
        return None

    if not hour_text.isdigit():
        return f"{hour_text}:{minute_text}"

    h = int(hour_text)
    if 1 <= h <= 12:
        if period == 'PM' and h < 12:
            h += 12
        elif period == 'AM' and h == 12:
            h = 0
    return f"{h:02d}:{minute_text.zfill(2)}"


def _prc_inputs(document: Dict[str, Any]) -> Optional[IncidentInputs]:
    details = lookup(document, 'part_a.incident_details', {}) or {}
    incident_date = details.get('incident_date') or {}
    day = str(incident_date.get('day') or '').strip()
    month = str(incident_date.get('month') or '').strip()
    year = str(incident_date.get('year') or '').strip()
    if not (day and month and year):
        return None

    clock = details.get('incident_time') or {}
    return IncidentInputs(
        incident_date=f"{year}-{month.zfill(2)}-{day.zfill(2)}",
        incident_time=_twelve_hour_to_24(clock.get('hour'), clock.get('minute'), clock.get('period')),
        pep_administered=lookup(document, 'part_a.immediate_management.pep_first_dose') is True,
        ec_administered=lookup(document, 'part_a.immediate_management.ecp_given') is True,
    )


def _single_field_inputs(document: Dict[str, Any], path: str) -> Optional[IncidentInputs]:
    value = lookup(document, path)
    if not isinstance(value, str) or not value.strip():
        return None
    return IncidentInputs(incident_date=value.strip())


def window_inputs_from_document(variant: Union[FormVariant, str], document: Dict[str, Any]) -> Optional[IncidentInputs]:
    """
    Extract window calculator inputs from a form document.

    - prc_moh363: incident date object, 12-hour clock with AM/PM,
      pep_first_dose / ecp_given flags
    - p3_official: part_one.date_and_time_of_alleged_offence
    - p3_simplified: survivor_information.incident_date

    P3 forms have no administered flags, so both are False.

    Returns:
        IncidentInputs, or None while the incident date is incomplete
    """
    variant = FormVariant(variant)
    if variant == FormVariant.PRC_MOH363:
        return _prc_inputs(document)
    if variant == FormVariant.P3_OFFICIAL:
        return _single_field_inputs(document, 'part_one.date_and_time_of_alleged_offence')
    return _single_field_inputs(document, 'survivor_information.incident_date')


def compute_windows_for_document(
    variant: Union[FormVariant, str],
    document: Dict[str, Any],
    now: datetime,
) -> Optional[TimeCriticalWindows]:
    """
    compute_windows() over the inputs found in a document.

    Returns:
        TimeCriticalWindows, or None while the incident date is incomplete

    Raises:
        InvalidTimeInput: If the document's incident date/time is malformed
    """
    inputs = window_inputs_from_document(variant, document)
    if inputs is None:
        return None
    return compute_windows(
        inputs.incident_date,
        now,
        pep_administered=inputs.pep_administered,
        ec_administered=inputs.ec_administered,
        incident_time=inputs.incident_time,
    )
