"""
Utility helpers for the clinical forms core

Simple utility functions for ID generation, timestamps and record
renumbering.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def generate_form_id(short=True):
    """
    Generate unique form identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Form ID

    Examples:
        >>> generate_form_id()
        'a3f7e2b9'

        >>> generate_form_id(short=False)
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def generate_record_id(prefix: Optional[str] = None) -> str:
    """
    Generate timestamp-derived record identifier

    Format: [{prefix}-]{epoch_milliseconds}-{short_uuid}

    The millisecond timestamp keeps ids roughly creation-ordered; the
    uuid suffix keeps two records created in the same millisecond apart.

    Args:
        prefix (str): Optional prefix (e.g., 'injury')

    Returns:
        str: Record ID

    Examples:
        >>> generate_record_id()
        '1732634245123-3f7e2b'

        >>> generate_record_id('injury')
        'injury-1732634245123-b4c8d1'
    """
    millis = int(time.time() * 1000)
    suffix = uuid.uuid4().hex[:6]
    record_id = f"{millis}-{suffix}"
    return f"{prefix}-{record_id}" if prefix else record_id


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


def recompute_serial_numbers(records: List[Dict[str, Any]], field: str = 'serial_number') -> List[Dict[str, Any]]:
    """
    Renumber records 1..n in list order.

    Removing a chain-of-custody row leaves a gap in serial numbers; this
    returns a renumbered copy. Records are copied only when their number
    changes.

    Args:
        records: Records carrying a serial number field
        field: Name of the serial number field

    Returns:
        list: New list with serial numbers 1..n
    """
    renumbered = []
    for position, record in enumerate(records, start=1):
        if record.get(field) == position:
            renumbered.append(record)
        else:
            renumbered.append({**record, field: position})
    return renumbered
