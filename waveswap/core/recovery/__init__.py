"""
Stuck Transaction Recovery

Classifies deposits and withdrawals that did not complete cleanly and tells
the user what to do next.
"""

from .classifier import DEFAULT_EXPECTED_TOKENS, RecoveryClassifier, next_steps_for
from .models import DeclaredType, RecoveryAction, RecoveryAssessment

__all__ = [
    "RecoveryClassifier",
    "RecoveryAction",
    "RecoveryAssessment",
    "DeclaredType",
    "DEFAULT_EXPECTED_TOKENS",
    "next_steps_for",
]
