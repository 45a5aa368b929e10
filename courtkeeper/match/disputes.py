"""Organizer resolution of disputed or stalled match results."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Optional

from courtkeeper.core.constants import (
    MATCH_COMPLETED,
    MATCH_DISPUTED,
    MATCH_PENDING_CONFIRMATION,
    MATCH_SCHEDULED,
    RESOLVE_ACTIONS,
    RESOLVE_EDIT,
    RESOLVE_FINALIZE,
    RESOLVE_VOID,
    SUBMISSION_CONFIRMED,
    SUBMISSION_PENDING,
    SUBMISSION_REJECTED,
    SUBMISSIONS_COLLECTION,
    VERIFICATION_FINAL,
    VERIFICATION_PENDING,
)
from courtkeeper.core.transactions import run_in_transaction, utcnow
from courtkeeper.errors import (
    AlreadyFinalError,
    InvalidScoreError,
    InvalidStateError,
    ValidationError,
)
from courtkeeper.notifications import notify_users
from courtkeeper.tournament.services import TournamentService

from .scoring import coerce_games, evaluate_games, format_match_score
from .services import MatchService, is_match_final, read_match
from .verification import confirmation_quorum, participant_ids

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)


class DisputeService:
    """Organizer-only overrides: finalize, edit or void a match result."""

    @staticmethod
    def _resolve_transaction(  # noqa: PLR0913
        transaction: Transaction,
        db: Client,
        match_ref: DocumentReference,
        organizer_id: str,
        is_admin: bool,
        action: str,
        new_scores: Optional[Iterable[Any]],
        now: datetime.datetime,
    ) -> dict[str, Any]:
        match = read_match(transaction, match_ref)
        tournament = TournamentService.get_tournament(
            db, match.get("tournamentId"), transaction=transaction
        )
        TournamentService.require_organizer(tournament, organizer_id, is_admin)

        if action not in RESOLVE_ACTIONS:
            raise ValidationError(f"Unknown resolution action: {action}")
        if is_match_final(match):
            raise AlreadyFinalError()
        if match.get("status") not in (MATCH_DISPUTED, MATCH_PENDING_CONFIRMATION):
            raise InvalidStateError("There is no submitted result to resolve.")

        submission_ref = None
        submission: dict[str, Any] = {}
        active_id = match.get("activeSubmissionId")
        if active_id:
            submission_ref = db.collection(SUBMISSIONS_COLLECTION).document(active_id)
            submission_doc = submission_ref.get(transaction=transaction)
            if submission_doc.exists:
                submission = submission_doc.to_dict() or {}

        resolution = {
            "verification.resolution": action,
            "verification.resolvedBy": organizer_id,
            "verification.resolvedAt": now,
        }

        if action == RESOLVE_VOID:
            settings = TournamentService.get_verification_settings(tournament)
            transaction.update(
                match_ref,
                {
                    "status": MATCH_SCHEDULED,
                    "scores": [],
                    "winnerId": None,
                    "completedAt": None,
                    "activeSubmissionId": None,
                    "updatedAt": now,
                    "verification": {
                        "verificationStatus": VERIFICATION_PENDING,
                        "confirmations": [],
                        "requiredConfirmations": confirmation_quorum(
                            settings, match, ""
                        ),
                        "disputedAt": None,
                        "disputedByUserId": None,
                        "disputeReason": None,
                        "disputeNotes": None,
                        "finalizedAt": None,
                        "finalizedByUserId": None,
                        "autoFinalized": False,
                        "needsReview": False,
                        "resolution": RESOLVE_VOID,
                        "resolvedBy": organizer_id,
                        "resolvedAt": now,
                    },
                },
            )
            if submission.get("status") == SUBMISSION_PENDING:
                transaction.update(
                    submission_ref,
                    {
                        "status": SUBMISSION_REJECTED,
                        "reasonRejected": "Voided by organizer",
                        "respondedAt": now,
                        "respondedBy": organizer_id,
                    },
                )
            return MatchService._summary(
                match["id"],
                MATCH_SCHEDULED,
                VERIFICATION_PENDING,
                active_id,
                resolution=RESOLVE_VOID,
            )

        if action == RESOLVE_EDIT:
            if new_scores is None:
                raise InvalidScoreError("New scores are required to edit a result.")
            games = coerce_games(new_scores)
        else:
            games = coerce_games(match.get("scores") or submission.get("scores") or [])
        result = evaluate_games(games, match.get("gameSettings"))
        winner_id = (match.get(result.winner_side_id) or {}).get("id")

        updates: dict[str, Any] = {
            "status": MATCH_COMPLETED,
            "scores": result.scores_as_dicts(),
            "winnerId": winner_id,
            "completedAt": now,
            "updatedAt": now,
            "activeSubmissionId": None,
            "verification.verificationStatus": VERIFICATION_FINAL,
            "verification.finalizedAt": now,
            "verification.finalizedByUserId": organizer_id,
            "verification.autoFinalized": False,
            "verification.needsReview": False,
        }
        updates.update(resolution)
        transaction.update(match_ref, updates)

        if submission.get("status") == SUBMISSION_PENDING:
            if action == RESOLVE_FINALIZE:
                submission_update = {"status": SUBMISSION_CONFIRMED}
            else:
                submission_update = {
                    "status": SUBMISSION_REJECTED,
                    "reasonRejected": "Score edited by organizer",
                }
            submission_update.update({"respondedAt": now, "respondedBy": organizer_id})
            transaction.update(submission_ref, submission_update)

        return MatchService._summary(
            match["id"],
            MATCH_COMPLETED,
            VERIFICATION_FINAL,
            active_id,
            resolution=action,
            winnerId=winner_id,
            score=format_match_score(result.games),
        )

    @staticmethod
    def resolve_dispute(  # noqa: PLR0913
        db: Client,
        match_id: str,
        organizer_id: str,
        action: str,
        new_scores: Optional[Iterable[Any]] = None,
        is_admin: bool = False,
        now: Optional[datetime.datetime] = None,
    ) -> dict[str, Any]:
        """Settle a match result as an organizer.

        ``finalize`` locks the submitted score, ``edit`` replaces it with
        ``new_scores`` (a score pair or a list of games) and locks it,
        ``void`` puts the match back to scheduled for a replay. Only
        finalize and edit propagate into the bracket and pool tables.
        """
        summary = run_in_transaction(
            db,
            DisputeService._resolve_transaction,
            db,
            MatchService._match_ref(db, match_id),
            organizer_id,
            is_admin,
            action,
            new_scores,
            now or utcnow(),
        )
        logger.info(f"Organizer {organizer_id} resolved match {match_id}: {action}")

        if action == RESOLVE_VOID:
            match_doc = MatchService._match_ref(db, match_id).get()
            notify_users(
                db,
                participant_ids(match_doc.to_dict() or {}),
                "Match voided",
                "An organizer voided the submitted result. Please replay the match.",
                "match_voided",
                match_id=match_id,
            )
            return summary
        return MatchService._attach_report(db, summary)
