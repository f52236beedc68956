"""
Semantic contracts for the clinical forms core.

This module defines the enums and immutable data structures passed
between the document engine, the completion rules, the window calculator
and whatever sits outside them (the JSON surface, a screen, a test).

Design principles:
- Frozen dataclasses (immutable after creation)
- String-based enums for JSON serialization
- No dependencies on other caseforms modules
- Definition layer only (no enforcement)

Contents:
- FormVariant: The three supported paper forms
- CompletionStatus: Workflow status of a document
- UrgencyTier: Elapsed-time classification for the PEP deadline
- DeadlineWindow / TimeCriticalWindows: Window calculator output
- SectionInfo: One navigation section of a form variant
- SubmissionCheck: Result of the one-shot submission gate
- IncidentInputs: Incident date/time and administered flags for a document

Usage:
    from caseforms.contracts import CompletionStatus, TimeCriticalWindows
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class FormVariant(str, Enum):
    """
    Supported form variants.

    Each variant has a template and a ruleset under caseforms/data,
    named after the enum value.
    """
    P3_OFFICIAL = "p3_official"
    P3_SIMPLIFIED = "p3_simplified"
    PRC_MOH363 = "prc_moh363"


class CompletionStatus(str, Enum):
    """
    Workflow status of a clinical document.

    Order matters: the levels are cumulative, so a document can only be
    PART_TWO_COMPLETE if everything required for PART_ONE_COMPLETE is
    also satisfied.

    Values:
        DRAFT: Nothing (or not enough) filled in yet
        PART_ONE_COMPLETE: First part satisfied (police section / Part A)
        PART_TWO_COMPLETE: Second part satisfied (medical section / Part B)
        COMPLETED: All required fields satisfied
        SUBMITTED: Explicitly submitted; never derived from field contents
    """
    DRAFT = "draft"
    PART_ONE_COMPLETE = "part_one_complete"
    PART_TWO_COMPLETE = "part_two_complete"
    COMPLETED = "completed"
    SUBMITTED = "submitted"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    CompletionStatus.DRAFT,
    CompletionStatus.PART_ONE_COMPLETE,
    CompletionStatus.PART_TWO_COMPLETE,
    CompletionStatus.COMPLETED,
    CompletionStatus.SUBMITTED,
]


class UrgencyTier(str, Enum):
    """
    Urgency of the 72-hour PEP deadline, from elapsed time only.

    Values:
        WARNING: 0-24 hours since incident (inclusive)
        URGENT: more than 24, up to 48 hours
        CRITICAL: more than 48, up to 72 hours
        EXPIRED: more than 72 hours

    The administered flags never change the tier. A consumer that wants
    to suppress the alert once PEP is given does so at display time
    (see caseforms.utils.display_helpers.alert_state).
    """
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"
    EXPIRED = "expired"


@dataclass(frozen=True)
class DeadlineWindow:
    """
    One post-incident treatment deadline.

    Attributes:
        name: 'pep' or 'ec'
        deadline_hours: Offset of the deadline from the incident (72 or 120)
        hours_remaining: max(0, deadline_hours - hours_elapsed)
        deadline: Absolute deadline timestamp
        within_window: hours_elapsed <= deadline_hours
    """
    name: str
    deadline_hours: int
    hours_remaining: float
    deadline: datetime
    within_window: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'deadline_hours': self.deadline_hours,
            'hours_remaining': self.hours_remaining,
            'deadline': self.deadline.isoformat(),
            'within_window': self.within_window,
        }


@dataclass(frozen=True)
class TimeCriticalWindows:
    """
    Ephemeral value object produced by the window calculator.

    Recomputed on every refresh tick and never persisted.

    Attributes:
        incident_at: Parsed incident timestamp
        computed_at: The 'now' the windows were computed against
        hours_elapsed: (computed_at - incident_at) in hours
        pep: 72-hour post-exposure prophylaxis window
        ec: 120-hour emergency contraception window
        urgency: PEP urgency tier (elapsed time only)
        pep_administered: Carried through for display
        ec_administered: Carried through for display
    """
    incident_at: datetime
    computed_at: datetime
    hours_elapsed: float
    pep: DeadlineWindow
    ec: DeadlineWindow
    urgency: UrgencyTier
    pep_administered: bool = False
    ec_administered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'incident_at': self.incident_at.isoformat(),
            'computed_at': self.computed_at.isoformat(),
            'hours_elapsed': self.hours_elapsed,
            'pep': self.pep.to_dict(),
            'ec': self.ec.to_dict(),
            'urgency': self.urgency.value,
            'pep_administered': self.pep_administered,
            'ec_administered': self.ec_administered,
        }


@dataclass(frozen=True)
class SectionInfo:
    """
    One navigation section of a form variant.

    Attributes:
        id: Section identifier (e.g., 'section_a_consent')
        title: Human-readable title
        part: Part label shown above the title (e.g., 'PART TWO')
        paths: Document paths edited by this section.
            Tuple (not list) to keep the contract immutable.
    """
    id: str
    title: str
    part: str
    paths: Tuple[str, ...]


@dataclass(frozen=True)
class SubmissionCheck:
    """
    Result of the submission gate.

    Attributes:
        ok: True if every checklist item passed
        missing_fields: Labels of failed checklist items, in checklist order
        first_failing_section: Section id to navigate to, None if ok
    """
    ok: bool
    missing_fields: Tuple[str, ...] = ()
    first_failing_section: Optional[str] = None


@dataclass(frozen=True)
class IncidentInputs:
    """
    Window calculator inputs as read from a document.

    Attributes:
        incident_date: ISO date (or datetime) string
        incident_time: 'HH:MM' on a 24-hour clock, None if not recorded
        pep_administered: First PEP dose given
        ec_administered: Emergency contraception given
    """
    incident_date: str
    incident_time: Optional[str] = None
    pep_administered: bool = False
    ec_administered: bool = False
