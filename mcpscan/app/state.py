"""
Scan request status machine.

Pending -> InProgress -> {Completed, CompletedWithErrors, Failed}. A request
may also fail straight from Pending. Repeating the current status is always
allowed; nothing leaves a terminal status.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Union

from mcpscan.errors import InvalidStatusError
from mcpscan.protocol import ScanStatus


_TRANSITIONS: Dict[ScanStatus, FrozenSet[ScanStatus]] = {
    ScanStatus.PENDING: frozenset({ScanStatus.IN_PROGRESS, ScanStatus.FAILED}),
    ScanStatus.IN_PROGRESS: frozenset(
        {
            ScanStatus.COMPLETED,
            ScanStatus.COMPLETED_WITH_ERRORS,
            ScanStatus.FAILED,
        }
    ),
}


def allowed(current: ScanStatus, requested: ScanStatus) -> bool:
    if current == requested:
        return True
    return requested in _TRANSITIONS.get(current, frozenset())


def parse_status(raw: Union[str, ScanStatus]) -> ScanStatus:
    """Accept a status value, case-insensitively. Raises InvalidStatusError when unknown."""
    if isinstance(raw, ScanStatus):
        return raw
    text = str(raw or "").strip()
    for status in ScanStatus:
        if status.value.lower() == text.lower():
            return status
    valid = ", ".join(s.value for s in ScanStatus)
    raise InvalidStatusError(f"Unknown scan status '{text}'. Expected one of: {valid}")
