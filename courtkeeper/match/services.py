"""Service layer for the score verification lifecycle of a match."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Optional, cast

from firebase_admin import firestore

from courtkeeper.core.constants import (
    ENTRY_ORGANIZER_ONLY,
    ENTRY_WINNER_ONLY,
    MATCH_CANCELLED,
    MATCH_COMPLETED,
    MATCH_DISPUTED,
    MATCH_PENDING_CONFIRMATION,
    MATCHES_COLLECTION,
    SIDE_A,
    SIDE_B,
    SUBMISSION_CONFIRMED,
    SUBMISSION_PENDING,
    SUBMISSION_REJECTED,
    SUBMISSIONS_COLLECTION,
    VERIFICATION_CONFIRMED,
    VERIFICATION_DISPUTED,
    VERIFICATION_FINAL,
    VERIFICATION_PENDING,
)
from courtkeeper.core.transactions import run_in_transaction, utcnow
from courtkeeper.errors import (
    AlreadyFinalError,
    AppError,
    DisputesDisabledError,
    DuplicateSubmissionError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from courtkeeper.notifications import email_organizer, notify_users
from courtkeeper.tournament.services import TournamentService

from .lifecycle import MatchLifecycle
from .models import ScoreSubmission, is_side_resolved
from .scoring import evaluate_score, format_match_score
from .verification import (
    can_user_confirm,
    confirmation_quorum,
    hours_until_auto_finalize,
    participant_ids,
    requires_organizer_review,
    should_auto_finalize,
    side_of_user,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)


def read_match(
    transaction: Optional[Transaction], match_ref: DocumentReference
) -> dict[str, Any]:
    snapshot = (
        match_ref.get(transaction=transaction) if transaction else match_ref.get()
    )
    if not snapshot.exists:
        raise NotFoundError(f"Match {match_ref.id} not found.")
    match = snapshot.to_dict() or {}
    match["id"] = snapshot.id
    return match


def is_match_final(match: dict[str, Any]) -> bool:
    verification = match.get("verification") or {}
    return (
        match.get("status") == MATCH_COMPLETED
        or verification.get("verificationStatus") == VERIFICATION_FINAL
    )


def final_match_fields(
    now: datetime.datetime,
    finalized_by: Optional[str],
    auto_finalized: bool = False,
) -> dict[str, Any]:
    """Return the match fields written when a result locks."""
    return {
        "status": MATCH_COMPLETED,
        "completedAt": now,
        "updatedAt": now,
        "activeSubmissionId": None,
        "verification.verificationStatus": VERIFICATION_FINAL,
        "verification.finalizedAt": now,
        "verification.finalizedByUserId": finalized_by,
        "verification.autoFinalized": auto_finalized,
        "verification.needsReview": False,
    }


class MatchService:
    """Drives a match from score proposal to a locked result."""

    @staticmethod
    def _match_ref(db: Client, match_id: str) -> DocumentReference:
        return db.collection(MATCHES_COLLECTION).document(match_id)

    @staticmethod
    def _summary(
        match_id: str,
        status: str,
        verification_status: str,
        submission_id: Optional[str] = None,
        changed: bool = True,
        **extra: Any,
    ) -> dict[str, Any]:
        summary = {
            "matchId": match_id,
            "status": status,
            "verificationStatus": verification_status,
            "submissionId": submission_id,
            "final": verification_status == VERIFICATION_FINAL,
            "changed": changed,
        }
        summary.update(extra)
        return summary

    @staticmethod
    def _attach_report(db: Client, summary: dict[str, Any]) -> dict[str, Any]:
        """Run post-completion effects for a freshly finalized match."""
        if summary["final"] and summary["changed"]:
            report = MatchLifecycle.run_post_completion(db, summary["matchId"])
            summary["postCompletion"] = report.to_dict()
            summary["warnings"] = report.warnings
        return summary

    # -- propose ---------------------------------------------------------

    @staticmethod
    def _submit_transaction(  # noqa: PLR0913
        transaction: Transaction,
        db: Client,
        match_ref: DocumentReference,
        submission_ref: DocumentReference,
        scores_a: Sequence[Any],
        scores_b: Sequence[Any],
        submitted_by: str,
        is_organizer: bool,
        now: datetime.datetime,
    ) -> dict[str, Any]:
        match = read_match(transaction, match_ref)
        if is_match_final(match):
            raise AlreadyFinalError()
        if match.get("status") == MATCH_CANCELLED:
            raise InvalidStateError("This match has been cancelled.")
        if match.get("status") == MATCH_DISPUTED:
            raise InvalidStateError(
                "This match is disputed and awaits an organizer decision."
            )
        if (
            match.get("activeSubmissionId")
            or match.get("status") == MATCH_PENDING_CONFIRMATION
        ):
            raise DuplicateSubmissionError()
        if not (
            is_side_resolved(match.get(SIDE_A))
            and is_side_resolved(match.get(SIDE_B))
        ):
            raise InvalidStateError("Both sides must be known before scoring.")

        tournament = TournamentService.get_tournament(
            db, match.get("tournamentId"), transaction=transaction
        )
        settings = TournamentService.get_verification_settings(tournament)

        submitter_slot = side_of_user(match, submitted_by)
        if settings.entry_mode == ENTRY_ORGANIZER_ONLY and not is_organizer:
            raise UnauthorizedError("Only an organizer can enter scores.")
        if submitter_slot is None and not is_organizer:
            raise NotEligibleError("Only match participants can submit scores.")

        result = evaluate_score(scores_a, scores_b, match.get("gameSettings"))
        if (
            settings.entry_mode == ENTRY_WINNER_ONLY
            and not is_organizer
            and submitter_slot != result.winner_side_id
        ):
            raise UnauthorizedError("Only the winning side can submit the score.")

        winner_id = match[result.winner_side_id]["id"]
        quorum = confirmation_quorum(settings, match, submitted_by)
        instant_final = quorum == 0 or (
            is_organizer and settings.organizer_entry_is_final
        )

        transaction.set(
            submission_ref,
            {
                "matchId": match["id"],
                "tournamentId": match.get("tournamentId"),
                "divisionId": match.get("divisionId"),
                "submittedBy": submitted_by,
                "sideAId": match[SIDE_A]["id"],
                "sideBId": match[SIDE_B]["id"],
                "scores": result.scores_as_dicts(),
                "winnerId": winner_id,
                "gamesWonA": result.games_won_a,
                "gamesWonB": result.games_won_b,
                "status": SUBMISSION_CONFIRMED if instant_final else SUBMISSION_PENDING,
                "createdAt": now,
                "respondedAt": now if instant_final else None,
                "respondedBy": submitted_by if instant_final else None,
                "reasonRejected": None,
            },
        )

        verification = {
            "verificationStatus": VERIFICATION_PENDING,
            "confirmations": [],
            "requiredConfirmations": quorum,
            "submittedAt": now,
            "submittedByUserId": submitted_by,
            "disputedAt": None,
            "disputedByUserId": None,
            "disputeReason": None,
            "disputeNotes": None,
            "finalizedAt": None,
            "finalizedByUserId": None,
            "autoFinalized": False,
            "needsReview": False,
        }
        updates: dict[str, Any] = {
            "scores": result.scores_as_dicts(),
            "winnerId": None,
            "status": MATCH_PENDING_CONFIRMATION,
            "activeSubmissionId": submission_ref.id,
            "updatedAt": now,
            "verification": verification,
        }
        if instant_final:
            verification.update(
                {
                    "verificationStatus": VERIFICATION_FINAL,
                    "finalizedAt": now,
                    "finalizedByUserId": submitted_by,
                }
            )
            updates.update(
                {
                    "winnerId": winner_id,
                    "status": MATCH_COMPLETED,
                    "completedAt": now,
                    "activeSubmissionId": None,
                }
            )
        transaction.update(match_ref, updates)

        return MatchService._summary(
            match["id"],
            updates["status"],
            verification["verificationStatus"],
            submission_ref.id,
            winnerId=winner_id,
            gamesWonA=result.games_won_a,
            gamesWonB=result.games_won_b,
            requiredConfirmations=quorum,
            opponentIds=sorted(participant_ids(match) - {submitted_by}),
            score=format_match_score(result.games),
        )

    @staticmethod
    def submit_score(  # noqa: PLR0913
        db: Client,
        match_id: str,
        scores_a: Sequence[Any],
        scores_b: Sequence[Any],
        submitted_by: str,
        is_organizer: bool = False,
        now: Optional[datetime.datetime] = None,
    ) -> dict[str, Any]:
        """Propose a result for a match.

        The submission record and the match update commit together. An
        organizer entry (when the tournament allows it) or an auto-confirm
        policy locks the result immediately.
        """
        now = now or utcnow()
        match_ref = MatchService._match_ref(db, match_id)
        submission_ref = db.collection(SUBMISSIONS_COLLECTION).document()
        summary = run_in_transaction(
            db,
            MatchService._submit_transaction,
            db,
            match_ref,
            submission_ref,
            scores_a,
            scores_b,
            submitted_by,
            is_organizer,
            now,
        )
        logger.info(
            f"Score {summary['score']} submitted for match {match_id} by "
            f"{submitted_by} ({summary['verificationStatus']})"
        )
        opponents = summary.pop("opponentIds")
        if summary["final"]:
            return MatchService._attach_report(db, summary)
        notify_users(
            db,
            opponents,
            "Confirm match score",
            f"A score of {summary['score']} was submitted. Please confirm or dispute.",
            "score_submitted",
            match_id=match_id,
        )
        return summary

    # -- acknowledge -----------------------------------------------------

    @staticmethod
    def _confirm_transaction(  # noqa: PLR0913
        transaction: Transaction,
        db: Client,
        match_ref: DocumentReference,
        user_id: str,
        is_organizer: bool,
        submission_id: Optional[str],
        now: datetime.datetime,
    ) -> dict[str, Any]:
        match = read_match(transaction, match_ref)
        verification = match.get("verification") or {}
        confirmations = list(verification.get("confirmations") or [])

        if is_match_final(match):
            if user_id in confirmations:
                return MatchService._summary(
                    match["id"], match.get("status"), VERIFICATION_FINAL, changed=False
                )
            raise AlreadyFinalError()
        if (
            match.get("status") == MATCH_DISPUTED
            or verification.get("verificationStatus") == VERIFICATION_DISPUTED
        ):
            raise InvalidStateError(
                "This score is disputed and awaits an organizer decision."
            )

        active_id = match.get("activeSubmissionId")
        if not active_id:
            raise NotFoundError("There is no score awaiting confirmation.")
        if submission_id and submission_id != active_id:
            raise InvalidStateError("That submission is no longer active.")

        submission_ref = db.collection(SUBMISSIONS_COLLECTION).document(active_id)
        submission_doc = submission_ref.get(transaction=transaction)
        if not submission_doc.exists:
            raise NotFoundError(f"Submission {active_id} not found.")
        submission = submission_doc.to_dict() or {}

        tournament = TournamentService.get_tournament(
            db, match.get("tournamentId"), transaction=transaction
        )
        settings = TournamentService.get_verification_settings(tournament)
        submitter_id = submission.get("submittedBy", "")

        allowed, reason = can_user_confirm(
            settings, match, submitter_id, user_id, is_organizer
        )
        if not allowed:
            raise NotEligibleError(reason)

        if user_id in confirmations:
            return MatchService._summary(
                match["id"],
                match.get("status"),
                verification.get("verificationStatus"),
                active_id,
                changed=False,
                confirmations=len(confirmations),
            )

        required = confirmation_quorum(settings, match, submitter_id)
        count = len(confirmations) + 1
        updates: dict[str, Any] = {
            "verification.confirmations": firestore.ArrayUnion([user_id]),
            "verification.requiredConfirmations": required,
            "updatedAt": now,
        }
        if count >= required:
            updates.update(final_match_fields(now, user_id))
            updates["winnerId"] = submission.get("winnerId")
            transaction.update(
                submission_ref,
                {
                    "status": SUBMISSION_CONFIRMED,
                    "respondedAt": now,
                    "respondedBy": user_id,
                },
            )
            status, verification_status = MATCH_COMPLETED, VERIFICATION_FINAL
        else:
            updates["verification.verificationStatus"] = VERIFICATION_CONFIRMED
            status = match.get("status")
            verification_status = VERIFICATION_CONFIRMED
        transaction.update(match_ref, updates)

        return MatchService._summary(
            match["id"],
            status,
            verification_status,
            active_id,
            confirmations=count,
            requiredConfirmations=required,
        )

    @staticmethod
    def confirm_score(  # noqa: PLR0913
        db: Client,
        match_id: str,
        user_id: str,
        is_organizer: bool = False,
        submission_id: Optional[str] = None,
        now: Optional[datetime.datetime] = None,
    ) -> dict[str, Any]:
        """Acknowledge the pending score; locks the match once the quorum is met.

        Re-acknowledging is a no-op.
        """
        summary = run_in_transaction(
            db,
            MatchService._confirm_transaction,
            db,
            MatchService._match_ref(db, match_id),
            user_id,
            is_organizer,
            submission_id,
            now or utcnow(),
        )
        if summary["changed"]:
            logger.info(
                f"User {user_id} confirmed match {match_id} "
                f"({summary['verificationStatus']})"
            )
        return MatchService._attach_report(db, summary)

    # -- dispute ---------------------------------------------------------

    @staticmethod
    def _dispute_transaction(  # noqa: PLR0913
        transaction: Transaction,
        db: Client,
        match_ref: DocumentReference,
        user_id: str,
        reason: str,
        notes: str,
        is_organizer: bool,
        now: datetime.datetime,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        match = read_match(transaction, match_ref)
        if is_match_final(match):
            raise AlreadyFinalError(
                "This match has already been finalized and can no longer be disputed."
            )
        if match.get("status") == MATCH_DISPUTED:
            raise InvalidStateError("This match is already disputed.")
        active_id = match.get("activeSubmissionId")
        if not active_id:
            raise InvalidStateError("There is no submitted score to dispute.")

        submission_ref = db.collection(SUBMISSIONS_COLLECTION).document(active_id)
        submission_ref.get(transaction=transaction)
        tournament = TournamentService.get_tournament(
            db, match.get("tournamentId"), transaction=transaction
        )
        settings = TournamentService.get_verification_settings(tournament)
        if not settings.allow_disputes:
            raise DisputesDisabledError()
        if user_id not in participant_ids(match) and not is_organizer:
            raise NotEligibleError("Only match participants can dispute a score.")

        transaction.update(
            submission_ref,
            {
                "status": SUBMISSION_REJECTED,
                "reasonRejected": reason,
                "respondedAt": now,
                "respondedBy": user_id,
            },
        )
        transaction.update(
            match_ref,
            {
                "status": MATCH_DISPUTED,
                "updatedAt": now,
                "verification.verificationStatus": VERIFICATION_DISPUTED,
                "verification.disputedAt": now,
                "verification.disputedByUserId": user_id,
                "verification.disputeReason": reason,
                "verification.disputeNotes": notes or None,
            },
        )
        summary = MatchService._summary(
            match["id"], MATCH_DISPUTED, VERIFICATION_DISPUTED, active_id
        )
        return summary, tournament

    @staticmethod
    def dispute_score(  # noqa: PLR0913
        db: Client,
        match_id: str,
        user_id: str,
        reason: str,
        notes: str = "",
        is_organizer: bool = False,
        now: Optional[datetime.datetime] = None,
    ) -> dict[str, Any]:
        """Reject the pending score and hand the match to the organizer."""
        if not reason or not str(reason).strip():
            raise ValidationError("A dispute reason is required.")
        summary, tournament = run_in_transaction(
            db,
            MatchService._dispute_transaction,
            db,
            MatchService._match_ref(db, match_id),
            user_id,
            str(reason).strip(),
            notes,
            is_organizer,
            now or utcnow(),
        )
        logger.info(f"Match {match_id} disputed by {user_id}: {reason}")

        organizer_id = TournamentService.get_organizer_id(tournament)
        notify_users(
            db,
            [organizer_id] if organizer_id else [],
            "Score disputed",
            f"A score in {tournament.get('name', 'your tournament')} was disputed.",
            "score_disputed",
            match_id=match_id,
        )
        email_organizer(
            db,
            organizer_id,
            "Score dispute needs review",
            f"Match {match_id} was disputed ({reason}). Notes: {notes or '-'}",
        )
        return summary

    # -- escalate --------------------------------------------------------

    @staticmethod
    def _escalate_transaction(
        transaction: Transaction,
        db: Client,
        match_ref: DocumentReference,
        now: datetime.datetime,
    ) -> dict[str, Any]:
        match = read_match(transaction, match_ref)
        verification = match.get("verification") or {}
        status = match.get("status")
        verification_status = verification.get("verificationStatus")
        unchanged = MatchService._summary(
            match["id"], status, verification_status, changed=False
        )
        if status != MATCH_PENDING_CONFIRMATION or is_match_final(match):
            return unchanged

        tournament = TournamentService.get_tournament(
            db, match.get("tournamentId"), transaction=transaction
        )
        settings = TournamentService.get_verification_settings(tournament)
        if not should_auto_finalize(settings, verification, now):
            return unchanged

        if requires_organizer_review(settings):
            if verification.get("needsReview"):
                return unchanged
            transaction.update(
                match_ref, {"verification.needsReview": True, "updatedAt": now}
            )
            return MatchService._summary(
                match["id"], status, verification_status, needsReview=True
            )

        active_id = match.get("activeSubmissionId")
        winner_id = None
        if active_id:
            submission_ref = db.collection(SUBMISSIONS_COLLECTION).document(active_id)
            submission_doc = submission_ref.get(transaction=transaction)
            if submission_doc.exists:
                winner_id = (submission_doc.to_dict() or {}).get("winnerId")
                transaction.update(
                    submission_ref,
                    {"status": SUBMISSION_CONFIRMED, "respondedAt": now},
                )
        if not winner_id:
            logger.error(f"Match {match['id']} pending without a winner; not escalating")
            return unchanged

        updates = final_match_fields(now, None, auto_finalized=True)
        updates["winnerId"] = winner_id
        transaction.update(match_ref, updates)
        return MatchService._summary(
            match["id"], MATCH_COMPLETED, VERIFICATION_FINAL, active_id, autoFinalized=True
        )

    @staticmethod
    def escalate(
        db: Client, match_id: str, now: Optional[datetime.datetime] = None
    ) -> dict[str, Any]:
        """Apply the time-based transition if the confirmation window has passed."""
        summary = run_in_transaction(
            db,
            MatchService._escalate_transaction,
            db,
            MatchService._match_ref(db, match_id),
            now or utcnow(),
        )
        if summary.get("autoFinalized"):
            logger.info(f"Match {match_id} auto-finalized after confirmation window")
        elif summary.get("needsReview"):
            logger.info(f"Match {match_id} flagged for organizer review")
        return MatchService._attach_report(db, summary)

    @staticmethod
    def escalate_pending_matches(
        db: Client, tournament_id: str, now: Optional[datetime.datetime] = None
    ) -> dict[str, Any]:
        """Evaluate escalation for every pending match in a tournament."""
        now = now or utcnow()
        docs = (
            db.collection(MATCHES_COLLECTION)
            .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
            .where(
                filter=firestore.FieldFilter("status", "==", MATCH_PENDING_CONFIRMATION)
            )
            .stream()
        )
        finalized: list[str] = []
        flagged: list[str] = []
        warnings: list[str] = []
        for doc in docs:
            try:
                summary = MatchService.escalate(db, doc.id, now=now)
            except AppError as e:
                logger.warning(f"Escalation skipped for match {doc.id}: {e.message}")
                continue
            if summary.get("autoFinalized"):
                finalized.append(doc.id)
                warnings.extend(summary.get("warnings", []))
            elif summary.get("needsReview"):
                flagged.append(doc.id)
        return {"finalized": finalized, "needsReview": flagged, "warnings": warnings}

    # -- read ------------------------------------------------------------

    @staticmethod
    def get_match(
        db: Client, match_id: str, now: Optional[datetime.datetime] = None
    ) -> dict[str, Any]:
        """Return the match after applying any due escalation."""
        now = now or utcnow()
        match_ref = MatchService._match_ref(db, match_id)
        match = read_match(None, match_ref)
        if match.get("status") == MATCH_PENDING_CONFIRMATION:
            summary = MatchService.escalate(db, match_id, now=now)
            if summary["changed"]:
                match = read_match(None, match_ref)
        if match.get("status") == MATCH_PENDING_CONFIRMATION:
            tournament = TournamentService.get_tournament(db, match.get("tournamentId"))
            settings = TournamentService.get_verification_settings(tournament)
            match["hoursUntilAutoFinalize"] = hours_until_auto_finalize(
                settings, match.get("verification") or {}, now
            )
        return match

    @staticmethod
    def is_match_organizer(
        db: Client, match_id: str, user_id: str, is_admin: bool = False
    ) -> bool:
        """Return True if the user organizes the match's tournament."""
        if is_admin:
            return True
        match = read_match(None, MatchService._match_ref(db, match_id))
        tournament = TournamentService.get_tournament(db, match.get("tournamentId"))
        return TournamentService.is_organizer(tournament, user_id)

    @staticmethod
    def get_submission(db: Client, submission_id: str) -> ScoreSubmission:
        """Fetch a score submission by id."""
        doc = db.collection(SUBMISSIONS_COLLECTION).document(submission_id).get()
        if not doc.exists:
            raise NotFoundError(f"Submission {submission_id} not found.")
        data = doc.to_dict() or {}
        data["id"] = doc.id
        return cast(ScoreSubmission, data)
