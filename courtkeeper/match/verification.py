"""Verification policy rules for proposed match scores.

These helpers are pure: they read match dictionaries and policy objects
and never touch Firestore. The service layer calls them inside its
transactions after re-reading the match document.
"""

from __future__ import annotations

import datetime
import math
from typing import Any, Optional

from courtkeeper.core.constants import (
    ENTRY_ORGANIZER_ONLY,
    METHOD_AUTO_CONFIRM,
    METHOD_MAJORITY,
    METHOD_ONE_OPPONENT,
    METHOD_ORGANIZER_ONLY,
    SIDE_A,
    SIDE_B,
    VERIFICATION_CONFIRMED,
    VERIFICATION_PENDING,
)

from .models import VerificationSettings


def side_player_ids(match: dict[str, Any], slot: str) -> list[str]:
    """Return the member ids of one side, or an empty list while TBD."""
    side = match.get(slot) or {}
    return [pid for pid in side.get("playerIds") or [] if pid]


def participant_ids(match: dict[str, Any]) -> set[str]:
    """Return every player id on either side of the match."""
    return set(side_player_ids(match, SIDE_A)) | set(side_player_ids(match, SIDE_B))


def side_of_user(match: dict[str, Any], user_id: str) -> Optional[str]:
    """Return the slot the user plays in, or None."""
    for slot in (SIDE_A, SIDE_B):
        if user_id in side_player_ids(match, slot):
            return slot
    return None


def opposing_slot(slot: str) -> str:
    """Return the other side's slot name."""
    return SIDE_B if slot == SIDE_A else SIDE_A


def get_required_confirmations(
    settings: VerificationSettings, match: dict[str, Any]
) -> int:
    """Derive how many acknowledgements a submission needs.

    Majority counts every player on the court: one for singles, two for
    doubles. Only members of the side opposing the submitter can supply
    them, so a doubles majority means both opponents.
    """
    method = settings.verification_method
    if method == METHOD_AUTO_CONFIRM:
        return 0
    if method in (METHOD_ONE_OPPONENT, METHOD_ORGANIZER_ONLY):
        return 1
    if method == METHOD_MAJORITY:
        player_count = len(participant_ids(match))
        return max(1, math.ceil(player_count / 2))
    return 1


def confirmation_quorum(
    settings: VerificationSettings, match: dict[str, Any], submitter_id: str
) -> int:
    """Return the required count, capped at how many users could confirm."""
    required = get_required_confirmations(settings, match)
    if settings.verification_method == METHOD_ORGANIZER_ONLY:
        return required
    submitter_slot = side_of_user(match, submitter_id)
    if submitter_slot is None:
        return required
    eligible = len(side_player_ids(match, opposing_slot(submitter_slot)))
    return min(required, eligible) if eligible else required


def can_user_confirm(
    settings: VerificationSettings,
    match: dict[str, Any],
    submitter_id: str,
    user_id: str,
    is_organizer: bool = False,
) -> tuple[bool, str]:
    """Return whether the user may acknowledge the pending score, and why not."""
    if user_id == submitter_id:
        return False, "You cannot confirm your own score submission."
    if settings.verification_method == METHOD_ORGANIZER_ONLY:
        if is_organizer:
            return True, ""
        return False, "Only an organizer can confirm scores in this tournament."
    submitter_slot = side_of_user(match, submitter_id)
    user_slot = side_of_user(match, user_id)
    if user_slot is None:
        return False, "Only match participants can confirm scores."
    if submitter_slot is not None and user_slot == submitter_slot:
        return False, "Only the opposing side can confirm this score."
    return True, ""


def _as_aware(value: Any) -> Optional[datetime.datetime]:
    if not isinstance(value, datetime.datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def should_auto_finalize(
    settings: VerificationSettings,
    verification: dict[str, Any],
    now: datetime.datetime,
) -> bool:
    """Return True once the escalation window has passed without a dispute."""
    if settings.auto_finalize_hours <= 0:
        return False
    if verification.get("verificationStatus") not in (
        VERIFICATION_PENDING,
        VERIFICATION_CONFIRMED,
    ):
        return False
    submitted_at = _as_aware(verification.get("submittedAt"))
    if submitted_at is None:
        return False
    elapsed = now - submitted_at
    return elapsed >= datetime.timedelta(hours=settings.auto_finalize_hours)


def requires_organizer_review(settings: VerificationSettings) -> bool:
    """Return True when escalation must hand the match to an organizer."""
    return (
        settings.entry_mode == ENTRY_ORGANIZER_ONLY
        or settings.verification_method == METHOD_ORGANIZER_ONLY
    )


def hours_until_auto_finalize(
    settings: VerificationSettings,
    verification: dict[str, Any],
    now: datetime.datetime,
) -> Optional[float]:
    """Return the hours left before escalation, or None if it never applies."""
    if settings.auto_finalize_hours <= 0:
        return None
    submitted_at = _as_aware(verification.get("submittedAt"))
    if submitted_at is None:
        return None
    deadline = submitted_at + datetime.timedelta(hours=settings.auto_finalize_hours)
    return max(0.0, (deadline - now).total_seconds() / 3600)
