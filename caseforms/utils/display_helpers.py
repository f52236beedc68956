"""
Display Helpers - Convert internal state to human-readable format

Used by the JSON surface and by screens rendering time-critical alerts
and validation messages.
"""

from typing import Any, Dict, Optional

from caseforms.contracts import CompletionStatus, UrgencyTier


# Status name mappings: status value -> Human Readable Label
STATUS_LABELS = {
    CompletionStatus.DRAFT: 'Draft',
    CompletionStatus.PART_ONE_COMPLETE: 'Part One Complete',
    CompletionStatus.PART_TWO_COMPLETE: 'Part Two Complete',
    CompletionStatus.COMPLETED: 'Completed',
    CompletionStatus.SUBMITTED: 'Submitted',
}

# Alert copy per display state
ALERT_MESSAGES = {
    'administered': 'PEP Administered',
    UrgencyTier.WARNING.value: 'PEP Window Open',
    UrgencyTier.URGENT.value: 'PEP Window Closing',
    UrgencyTier.CRITICAL.value: 'PEP Window Critical',
    UrgencyTier.EXPIRED.value: 'PEP Window Expired',
}

# Field labels that don't title-case cleanly
FIELD_LABELS = {
    'ob_number': 'OB Number',
    'mfl_code': 'MFL Code',
    'facility_mfl_code': 'Facility MFL Code',
    'op_ip_number': 'OP/IP Number',
    'pep_first_dose': 'PEP First Dose',
    'ecp_given': 'ECP Given',
    'ecp_number_of_tablets': 'ECP Number of Tablets',
    'id_or_birth_certificate_number': 'ID or Birth Certificate Number',
}


def format_hours_remaining(hours: Optional[float]) -> str:
    """
    Format remaining hours for an alert banner.

    Args:
        hours: Hours remaining (as returned in a DeadlineWindow)

    Returns:
        'EXPIRED' when nothing remains, '{d}d {h}h {m}m' from one day up,
        '{h}h {m}m' below one day. Minutes are truncated, not rounded.

    Examples:
        >>> format_hours_remaining(0)
        'EXPIRED'
        >>> format_hours_remaining(49.5)
        '2d 1h 30m'
        >>> format_hours_remaining(5.25)
        '5h 15m'
    """
    if hours is None or hours <= 0:
        return 'EXPIRED'

    whole_hours = int(hours)
    minutes = int((hours - whole_hours) * 60)
    days, rem_hours = divmod(whole_hours, 24)

    if days > 0:
        return f"{days}d {rem_hours}h {minutes}m"
    return f"{rem_hours}h {minutes}m"


def alert_state(tier: UrgencyTier, administered: bool) -> str:
    """
    Display state of the PEP alert.

    The urgency tier itself never depends on the administered flag; this
    is where a screen decides to show the success state instead.

    Returns:
        'administered' or the tier value
    """
    if administered:
        return 'administered'
    return UrgencyTier(tier).value


def format_status(status: Any) -> str:
    """Human-readable label for a completion status value"""
    try:
        return STATUS_LABELS[CompletionStatus(status)]
    except ValueError:
        return str(status)


def format_field_name(field_path: str) -> str:
    """
    Convert a dotted field path to a human-readable label.

    Uses the last path segment. Falls back to replacing underscores and
    capitalising the first word.

    Examples:
        >>> format_field_name('part_one.patient_name')
        'Patient name'
        >>> format_field_name('examiner_information.ob_number')
        'OB Number'
    """
    name = field_path.rsplit('.', 1)[-1]
    if name in FIELD_LABELS:
        return FIELD_LABELS[name]
    return name.replace('_', ' ').capitalize()


def format_windows_for_display(windows) -> Dict[str, Any]:
    """
    Convert TimeCriticalWindows to banner-ready strings.

    Args:
        windows: TimeCriticalWindows from the window calculator

    Returns:
        dict: {
            'state': 'warning' | 'urgent' | 'critical' | 'expired' | 'administered',
            'message': Alert headline,
            'pep_remaining': e.g. '1d 23h 59m',
            'ec_remaining': e.g. '4d 0h 0m',
            'pep_deadline': ISO timestamp,
            'ec_deadline': ISO timestamp,
            'ec_state': 'administered' | 'open' | 'expired'
        }
    """
    state = alert_state(windows.urgency, windows.pep_administered)
    if windows.ec_administered:
        ec_state = 'administered'
    else:
        ec_state = 'open' if windows.ec.within_window else 'expired'

    return {
        'state': state,
        'message': ALERT_MESSAGES[state],
        'pep_remaining': format_hours_remaining(windows.pep.hours_remaining),
        'ec_remaining': format_hours_remaining(windows.ec.hours_remaining),
        'pep_deadline': windows.pep.deadline.isoformat(),
        'ec_deadline': windows.ec.deadline.isoformat(),
        'ec_state': ec_state,
    }
