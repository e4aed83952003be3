"""
auth/models.py -- Request identity and authorization outcome.

Pattern: Data class (pure data container, zero logic). The user record
itself lives in fleet/models.py; this is only what a request knows about
who is calling.

Layer rule: no imports from api/ or fleet/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, resolved once per request.

    Passed explicitly into every service call that depends on who is asking
    (car ownership, default owner on car creation).
    """

    user_id: int
    username: str


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
