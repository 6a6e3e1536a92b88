"""
Enumerations shared by the alert and incident subsystems, plus the lenient
parser used wherever enum values arrive as free-form strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)


class Parish(str, Enum):
    """Jamaica's 14 parishes — the unit alerts are scoped to."""
    KINGSTON      = "KINGSTON"
    ST_ANDREW     = "ST_ANDREW"
    ST_THOMAS     = "ST_THOMAS"
    PORTLAND      = "PORTLAND"
    ST_MARY       = "ST_MARY"
    ST_ANN        = "ST_ANN"
    TRELAWNY      = "TRELAWNY"
    ST_JAMES      = "ST_JAMES"
    HANOVER       = "HANOVER"
    WESTMORELAND  = "WESTMORELAND"
    ST_ELIZABETH  = "ST_ELIZABETH"
    MANCHESTER    = "MANCHESTER"
    CLARENDON     = "CLARENDON"
    ST_CATHERINE  = "ST_CATHERINE"


class Severity(str, Enum):
    LOW    = "LOW"
    MEDIUM = "MEDIUM"
    HIGH   = "HIGH"


def parse_enum(enum_cls: Type[E], value: Optional[str]) -> Optional[E]:
    """
    Parse ``value`` into ``enum_cls``; None when missing or unrecognised.

    Matching is on the enum value, case-insensitive, so ``"kingston"`` and
    ``"KINGSTON"`` both resolve to ``Parish.KINGSTON``.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    for member in enum_cls:
        if str(member.value).upper() == text.upper():
            return member
    return None
