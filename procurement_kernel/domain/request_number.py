"""
Request number value object.

Format: ``{company_code}-{department_code}-{YYYYMM}-{seq:04d}``, e.g.
``ACME-ENG-202508-0007`` or ``AKM-JKT-IT-202508-0012``.  Company codes
may contain dashes; department codes may not, which keeps the format
unambiguous.  The sequence restarts at 1 for every
(company, department, period) prefix and never exceeds ``MAX_SEQUENCE``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

MAX_SEQUENCE = 9999
SEQUENCE_WIDTH = 4

_PATTERN = re.compile(
    r"^(?P<company>[A-Z0-9]+(?:-[A-Z0-9]+)*)-(?P<department>[A-Z0-9]+)-(?P<period>\d{6})-(?P<seq>\d{4})$"
)


def period_for(moment: datetime) -> str:
    """YYYYMM period of a timestamp."""
    return f"{moment.year:04d}{moment.month:02d}"


def prefix_for(company_code: str, department_code: str, period: str) -> str:
    """Prefix shared by every number in one allocation scope (no trailing dash)."""
    return f"{company_code.upper()}-{department_code.upper()}-{period}"


@dataclass(frozen=True)
class RequestNumber:
    """A parsed, validated request number."""

    company_code: str
    department_code: str
    period: str
    sequence: int

    def __post_init__(self) -> None:
        if not 1 <= self.sequence <= MAX_SEQUENCE:
            raise ValueError(
                f"Sequence {self.sequence} outside 1..{MAX_SEQUENCE}"
            )
        if len(self.period) != 6 or not self.period.isdigit():
            raise ValueError(f"Period must be YYYYMM, got {self.period!r}")

    @property
    def prefix(self) -> str:
        return prefix_for(self.company_code, self.department_code, self.period)

    @property
    def value(self) -> str:
        return f"{self.prefix}-{self.sequence:0{SEQUENCE_WIDTH}d}"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> RequestNumber:
        """
        Parse a formatted request number.

        Raises:
            ValueError: if ``value`` does not match the format.
        """
        match = _PATTERN.match(value)
        if match is None:
            raise ValueError(f"Malformed request number: {value!r}")
        return cls(
            company_code=match["company"],
            department_code=match["department"],
            period=match["period"],
            sequence=int(match["seq"]),
        )


COMPANY_CODE_PATTERN = re.compile(r"^[A-Z0-9]+(?:-[A-Z0-9]+)*$")
DEPARTMENT_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")
