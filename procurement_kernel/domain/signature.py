"""
SignatureStamp -- attestation boundary for approvals.

Responsibility:
    Defines the narrow interface through which the workflow asks an
    external attestation service for an opaque signature reference when
    an approval is granted.  The kernel stores the reference only; QR
    imagery and document rendering belong to the caller.

Architecture position:
    Kernel > Domain -- pure.  ``HashSignatureStamp`` is deterministic and
    performs no I/O, so it doubles as the production default and the test
    implementation.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Protocol
from uuid import UUID

from procurement_kernel.domain.roles import Role


class SignatureStamp(Protocol):
    """Issue an attestation reference for an approval decision."""

    def issue(self, subject_id: UUID, role: Role, timestamp: datetime) -> str:
        ...


class HashSignatureStamp:
    """
    Deterministic SHA-256 signature references.

    Guarantees:
        - Same (subject, role, timestamp, namespace) -> same reference.
        - References are ``"sig-"`` followed by 64 hex characters.
    """

    PREFIX = "sig-"

    def __init__(self, namespace: str = "procurement"):
        self._namespace = namespace

    def issue(self, subject_id: UUID, role: Role, timestamp: datetime) -> str:
        payload = "|".join((
            self._namespace,
            str(subject_id),
            Role(role).value,
            timestamp.isoformat(),
        ))
        return self.PREFIX + hashlib.sha256(payload.encode("utf-8")).hexdigest()
