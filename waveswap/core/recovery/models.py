"""Recovery classification outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class DeclaredType(str, Enum):
    """What the user says the stuck transaction was."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class RecoveryAction(str, Enum):
    NOT_FOUND = "not_found"
    CHAIN_FAILED = "chain_failed"
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED_NO_PRIVATE_FUNDS = "confirmed_no_private_funds"
    CONFIRMED_PRIVATE_FUNDS_AVAILABLE = "confirmed_private_funds_available"
    CONFIRMED_NO_PRIVATE_FUNDS_IMPLIED = "confirmed_no_private_funds_implied"
    UNABLE_TO_CLASSIFY = "unable_to_classify"


@dataclass
class RecoveryAssessment:
    """Classification of a stalled transaction plus guidance for the user."""

    action: RecoveryAction
    message: str
    next_steps: List[str]
    signature: str
    declared_type: DeclaredType
    user_identity: str
    chain_status: Optional[Dict[str, Any]] = None
    tokens_found: List[str] = field(default_factory=list)
    support_contact: Optional[str] = None
    assessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "message": self.message,
            "next_steps": list(self.next_steps),
            "signature": self.signature,
            "declared_type": self.declared_type.value,
            "user_identity": self.user_identity,
            "chain_status": self.chain_status,
            "tokens_found": list(self.tokens_found),
            "support_contact": self.support_contact,
            "assessed_at": self.assessed_at.isoformat(),
        }
