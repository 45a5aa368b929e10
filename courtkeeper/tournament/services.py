"""Service layer for tournament policy and organizer access."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from courtkeeper.core.constants import TOURNAMENTS_COLLECTION
from courtkeeper.errors import NotFoundError, UnauthorizedError
from courtkeeper.match.models import VerificationSettings

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)


class TournamentService:
    """Handles tournament lookups needed by the match lifecycle."""

    @staticmethod
    def get_tournament(
        db: Client, tournament_id: str, transaction: Optional[Transaction] = None
    ) -> dict[str, Any]:
        """Fetch a tournament document or raise NotFoundError."""
        if not tournament_id:
            raise NotFoundError("Match is not attached to a tournament.")
        ref = db.collection(TOURNAMENTS_COLLECTION).document(tournament_id)
        doc = ref.get(transaction=transaction) if transaction else ref.get()
        if not doc.exists:
            raise NotFoundError(f"Tournament {tournament_id} not found.")
        data = doc.to_dict() or {}
        data["id"] = doc.id
        return data

    @staticmethod
    def get_organizer_id(tournament: dict[str, Any]) -> Optional[str]:
        """Return the organizer's user id from a tournament document."""
        owner_ref = tournament.get("ownerRef")
        return tournament.get("organizer_id") or (
            owner_ref.id if owner_ref is not None else None
        )

    @staticmethod
    def is_organizer(
        tournament: dict[str, Any], user_id: Optional[str], is_admin: bool = False
    ) -> bool:
        """Return True if the user may act as organizer for the tournament."""
        if not user_id:
            return False
        if is_admin:
            return True
        if user_id == TournamentService.get_organizer_id(tournament):
            return True
        return user_id in (tournament.get("organizerIds") or [])

    @staticmethod
    def require_organizer(
        tournament: dict[str, Any], user_id: Optional[str], is_admin: bool = False
    ) -> None:
        """Raise UnauthorizedError unless the user is an organizer."""
        if not TournamentService.is_organizer(tournament, user_id, is_admin):
            logger.warning(
                f"User {user_id} denied organizer action on "
                f"tournament {tournament.get('id')}"
            )
            raise UnauthorizedError("Only an organizer can perform this action.")

    @staticmethod
    def get_verification_settings(tournament: dict[str, Any]) -> VerificationSettings:
        """Return the tournament's verification policy merged over defaults."""
        return VerificationSettings.from_dict(tournament.get("verificationSettings"))
