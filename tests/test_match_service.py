"""Tests for the match verification lifecycle."""

from __future__ import annotations

import datetime
import unittest
from unittest.mock import patch

from courtkeeper import create_app
from courtkeeper.errors import (
    AlreadyFinalError,
    DisputesDisabledError,
    DuplicateSubmissionError,
    InvalidScoreError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    TiedResultError,
    UnauthorizedError,
    ValidationError,
)
from courtkeeper.match.services import MatchService
from tests.helpers import T0, LifecycleTestCase, side


def hours(n: float) -> datetime.datetime:
    return T0 + datetime.timedelta(hours=n)


class SubmitScoreTestCase(LifecycleTestCase):
    """Tests for proposing a result."""

    def setUp(self) -> None:
        """Set up a singles match feeding a semifinal."""
        super().setUp()
        self.seed_tournament()
        self.seed_singles(nextMatchId="m2", nextMatchSlot="sideA")
        self.seed_match("m2", None, side("team-carol", "carol"), roundNumber=2)

    def submissions(self) -> list[dict]:
        docs = self.db.collection("scoreSubmissions").stream()
        return [d.to_dict() for d in docs if d.exists]

    def test_submit_then_opponent_confirms(self) -> None:
        """A proposal waits for the opponent, then locks and advances."""
        summary = MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        self.assertEqual(summary["status"], "pending_confirmation")
        self.assertEqual(summary["verificationStatus"], "pending")
        self.assertFalse(summary["final"])

        match = self.match()
        self.assertEqual(match["status"], "pending_confirmation")
        self.assertEqual(match["activeSubmissionId"], summary["submissionId"])
        self.assertIsNone(match["winnerId"])
        self.assertIsNone(self.match("m2")["sideA"])

        with self.assertRaises(NotEligibleError):
            MatchService.confirm_score(self.db, "m1", "alice", now=T0)

        result = MatchService.confirm_score(self.db, "m1", "bob", now=hours(1))
        self.assertTrue(result["final"])
        self.assertEqual(result["postCompletion"]["warnings"], [])

        match = self.match()
        self.assertEqual(match["status"], "completed")
        self.assertEqual(match["winnerId"], "team-alice")
        self.assertEqual(match["verification"]["verificationStatus"], "final")
        self.assertEqual(match["verification"]["confirmations"], ["bob"])
        self.assertIsNone(match["activeSubmissionId"])
        self.assertEqual(self.match("m2")["sideA"]["id"], "team-alice")
        self.assertEqual(self.match("m2")["sideB"]["id"], "team-carol")
        self.assertEqual(self.submissions()[0]["status"], "confirmed")

    def test_opponent_is_notified(self) -> None:
        """Opponents get an in-app prompt to confirm."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        notes = [
            d.to_dict()
            for d in self.db.collection("users")
            .document("bob")
            .collection("notifications")
            .stream()
        ]
        self.assertEqual(len(notes), 1)
        self.assertEqual(notes[0]["type"], "score_submitted")
        self.assertEqual(notes[0]["matchId"], "m1")

    def test_second_submission_rejected(self) -> None:
        """Only one proposal can be open at a time."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        with self.assertRaises(DuplicateSubmissionError):
            MatchService.submit_score(self.db, "m1", [7], [11], "bob", now=T0)
        self.assertEqual(len(self.submissions()), 1)

    def test_level_game_writes_nothing(self) -> None:
        """A drawn game is rejected even when the other games decide the match."""
        with self.assertRaises(InvalidScoreError):
            MatchService.submit_score(self.db, "m1", [11, 11], [11, 5], "alice", now=T0)
        self.assertEqual(self.match()["status"], "scheduled")
        self.assertEqual(self.submissions(), [])

    def test_tied_result_writes_nothing(self) -> None:
        """A tie is rejected before any write."""
        with self.assertRaises(TiedResultError):
            MatchService.submit_score(self.db, "m1", [11, 5], [5, 11], "alice", now=T0)
        self.assertEqual(self.match()["status"], "scheduled")
        self.assertEqual(self.submissions(), [])
        self.assertFalse(self.transactions[-1].committed)

    def test_outsider_cannot_submit(self) -> None:
        """Spectators may not propose scores."""
        with self.assertRaises(NotEligibleError):
            MatchService.submit_score(self.db, "m1", [11], [7], "carol", now=T0)

    def test_unresolved_sides_rejected(self) -> None:
        """A match waiting on a feeder cannot be scored."""
        with self.assertRaises(InvalidStateError):
            MatchService.submit_score(self.db, "m2", [11], [7], "carol", now=T0)

    def test_missing_match(self) -> None:
        """Unknown matches raise NotFoundError."""
        with self.assertRaises(NotFoundError):
            MatchService.submit_score(self.db, "nope", [11], [7], "alice", now=T0)

    def test_confirm_is_idempotent(self) -> None:
        """Repeating an acknowledgement on a final match is a no-op."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        MatchService.confirm_score(self.db, "m1", "bob", now=T0)
        again = MatchService.confirm_score(self.db, "m1", "bob", now=hours(1))
        self.assertFalse(again["changed"])
        self.assertNotIn("postCompletion", again)
        self.assertEqual(self.match()["verification"]["confirmations"], ["bob"])

    def test_confirm_after_final_by_someone_else(self) -> None:
        """A new acknowledgement on a final match is refused."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        MatchService.confirm_score(self.db, "m1", "bob", now=T0)
        with self.assertRaises(AlreadyFinalError):
            MatchService.confirm_score(self.db, "m1", "carol", now=T0)
        with self.assertRaises(AlreadyFinalError):
            MatchService.submit_score(self.db, "m1", [11], [3], "alice", now=T0)

    def test_confirm_stale_submission_id(self) -> None:
        """Acknowledging a superseded submission is refused."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        with self.assertRaises(InvalidStateError):
            MatchService.confirm_score(
                self.db, "m1", "bob", submission_id="old", now=T0
            )

    def test_confirm_without_submission(self) -> None:
        """There is nothing to acknowledge on a scheduled match."""
        with self.assertRaises(NotFoundError):
            MatchService.confirm_score(self.db, "m1", "bob", now=T0)


class VerificationPolicyTestCase(LifecycleTestCase):
    """Tests for tournament-level entry and verification policies."""

    def test_doubles_majority_needs_both_opponents(self) -> None:
        """One opponent acknowledgement is partial; the second locks it."""
        self.seed_tournament(verificationMethod="majority")
        self.seed_doubles()
        summary = MatchService.submit_score(self.db, "m1", [11], [4], "alice", now=T0)
        self.assertEqual(summary["requiredConfirmations"], 2)

        with self.assertRaises(NotEligibleError):
            MatchService.confirm_score(self.db, "m1", "ann", now=T0)

        partial = MatchService.confirm_score(self.db, "m1", "bob", now=T0)
        self.assertFalse(partial["final"])
        self.assertEqual(partial["verificationStatus"], "confirmed")
        match = self.match()
        self.assertEqual(match["status"], "pending_confirmation")
        self.assertEqual(match["verification"]["verificationStatus"], "confirmed")

        repeat = MatchService.confirm_score(self.db, "m1", "bob", now=T0)
        self.assertFalse(repeat["changed"])
        self.assertEqual(self.match()["verification"]["confirmations"], ["bob"])

        final = MatchService.confirm_score(self.db, "m1", "ben", now=T0)
        self.assertTrue(final["final"])
        self.assertEqual(self.match()["winnerId"], "team-a")
        self.assertEqual(
            sorted(self.match()["verification"]["confirmations"]), ["ben", "bob"]
        )

    def test_organizer_only_entry(self) -> None:
        """Players cannot enter scores; the organizer's entry is final."""
        self.seed_tournament(entryMode="organizer_only")
        self.seed_singles()
        with self.assertRaises(UnauthorizedError):
            MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)

        summary = MatchService.submit_score(
            self.db, "m1", [11], [7], "org", is_organizer=True, now=T0
        )
        self.assertTrue(summary["final"])
        match = self.match()
        self.assertEqual(match["status"], "completed")
        self.assertEqual(match["winnerId"], "team-alice")
        self.assertEqual(match["verification"]["finalizedByUserId"], "org")

    def test_organizer_entry_can_require_confirmation(self) -> None:
        """With organizerEntryIsFinal off, organizer scores wait like any other."""
        self.seed_tournament(organizerEntryIsFinal=False)
        self.seed_singles()
        summary = MatchService.submit_score(
            self.db, "m1", [11], [7], "org", is_organizer=True, now=T0
        )
        self.assertFalse(summary["final"])
        self.assertEqual(self.match()["status"], "pending_confirmation")

    def test_auto_confirm(self) -> None:
        """Auto-confirm locks the first valid submission."""
        self.seed_tournament(verificationMethod="auto_confirm")
        self.seed_singles()
        summary = MatchService.submit_score(self.db, "m1", [5], [11], "alice", now=T0)
        self.assertTrue(summary["final"])
        self.assertEqual(self.match()["winnerId"], "team-bob")

    def test_winner_only_entry(self) -> None:
        """Only the winning side may submit."""
        self.seed_tournament(entryMode="winner_only")
        self.seed_singles()
        with self.assertRaises(UnauthorizedError):
            MatchService.submit_score(self.db, "m1", [11], [7], "bob", now=T0)
        summary = MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        self.assertEqual(summary["status"], "pending_confirmation")


class DisputeScoreTestCase(LifecycleTestCase):
    """Tests for rejecting a proposed score."""

    def setUp(self) -> None:
        """Set up a singles match with a pending score."""
        super().setUp()
        self.seed_tournament()
        self.seed_singles()

    def submit(self) -> dict:
        return MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)

    def test_dispute_blocks_confirmation(self) -> None:
        """A disputed score waits for the organizer."""
        submitted = self.submit()
        summary = MatchService.dispute_score(
            self.db, "m1", "bob", "wrong_score", notes="It was 11-9", now=hours(1)
        )
        self.assertEqual(summary["status"], "disputed")

        match = self.match()
        self.assertEqual(match["status"], "disputed")
        self.assertEqual(match["verification"]["disputeReason"], "wrong_score")
        self.assertEqual(match["verification"]["disputedByUserId"], "bob")
        self.assertEqual(match["verification"]["disputeNotes"], "It was 11-9")
        self.assertIsNone(match["winnerId"])
        submission = self.doc("scoreSubmissions", submitted["submissionId"])
        self.assertEqual(submission["status"], "rejected")
        self.assertEqual(submission["reasonRejected"], "wrong_score")

        with self.assertRaises(InvalidStateError):
            MatchService.confirm_score(self.db, "m1", "bob", now=hours(2))
        with self.assertRaises(InvalidStateError):
            MatchService.submit_score(self.db, "m1", [11], [9], "alice", now=hours(2))
        with self.assertRaises(InvalidStateError):
            MatchService.dispute_score(self.db, "m1", "alice", "other", now=hours(2))

    def test_organizer_notified(self) -> None:
        """The organizer gets an in-app alert."""
        self.submit()
        MatchService.dispute_score(self.db, "m1", "bob", "wrong_winner", now=T0)
        notes = list(
            self.db.collection("users")
            .document("org")
            .collection("notifications")
            .stream()
        )
        self.assertEqual([n.to_dict()["type"] for n in notes], ["score_disputed"])

    @patch("courtkeeper.notifications.send_email")
    def test_owner_ref_organizer_emailed(self, mock_send) -> None:
        """Tournaments that only carry ownerRef still reach their organizer."""
        self.db.collection("tournaments").document("t1").set(
            {
                "name": "Spring Open",
                "ownerRef": self.db.collection("users").document("org"),
                "verificationSettings": {},
            }
        )
        ctx = create_app({"TESTING": True}).app_context()
        ctx.push()
        self.addCleanup(ctx.pop)

        self.submit()
        MatchService.dispute_score(self.db, "m1", "bob", "wrong_score", now=T0)

        mock_send.assert_called_once()
        self.assertEqual(mock_send.call_args.args[0], "org@example.com")
        notes = list(
            self.db.collection("users")
            .document("org")
            .collection("notifications")
            .stream()
        )
        self.assertEqual(len(notes), 1)

    def test_dispute_after_final(self) -> None:
        """Finalized matches cannot be disputed."""
        self.submit()
        MatchService.confirm_score(self.db, "m1", "bob", now=T0)
        with self.assertRaises(AlreadyFinalError):
            MatchService.dispute_score(self.db, "m1", "bob", "wrong_score", now=T0)

    def test_reason_required(self) -> None:
        """Blank reasons are rejected before any read."""
        self.submit()
        with self.assertRaises(ValidationError):
            MatchService.dispute_score(self.db, "m1", "bob", "  ", now=T0)

    def test_outsider_cannot_dispute(self) -> None:
        """Spectators may not dispute."""
        self.submit()
        with self.assertRaises(NotEligibleError):
            MatchService.dispute_score(self.db, "m1", "carol", "other", now=T0)

    def test_nothing_to_dispute(self) -> None:
        """A scheduled match has no score to dispute."""
        with self.assertRaises(InvalidStateError):
            MatchService.dispute_score(self.db, "m1", "bob", "other", now=T0)

    def test_disputes_disabled(self) -> None:
        """Tournaments may turn disputes off."""
        self.seed_tournament(allowDisputes=False)
        self.submit()
        with self.assertRaises(DisputesDisabledError):
            MatchService.dispute_score(self.db, "m1", "bob", "wrong_score", now=T0)
        self.assertEqual(self.match()["status"], "pending_confirmation")


class EscalationTestCase(LifecycleTestCase):
    """Tests for the time-based transition of unanswered scores."""

    def test_auto_finalize_after_window(self) -> None:
        """Nothing happens before the window; the score locks after it."""
        self.seed_tournament(autoFinalizeHours=24)
        self.seed_singles()
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)

        early = MatchService.escalate(self.db, "m1", now=hours(23))
        self.assertFalse(early["changed"])
        self.assertEqual(self.match()["status"], "pending_confirmation")

        late = MatchService.escalate(self.db, "m1", now=hours(24))
        self.assertTrue(late["autoFinalized"])
        match = self.match()
        self.assertEqual(match["status"], "completed")
        self.assertEqual(match["winnerId"], "team-alice")
        self.assertTrue(match["verification"]["autoFinalized"])
        self.assertIsNone(match["verification"]["finalizedByUserId"])

    def test_organizer_method_flags_review(self) -> None:
        """Organizer-verified tournaments escalate to review, not finality."""
        self.seed_tournament(verificationMethod="organizer_only")
        self.seed_singles()
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)

        summary = MatchService.escalate(self.db, "m1", now=hours(30))
        self.assertTrue(summary["needsReview"])
        match = self.match()
        self.assertEqual(match["status"], "pending_confirmation")
        self.assertTrue(match["verification"]["needsReview"])
        self.assertIsNone(match["winnerId"])

        again = MatchService.escalate(self.db, "m1", now=hours(31))
        self.assertFalse(again["changed"])

    def test_disabled_window(self) -> None:
        """Zero hours never escalates."""
        self.seed_tournament(autoFinalizeHours=0)
        self.seed_singles()
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        summary = MatchService.escalate(self.db, "m1", now=hours(1000))
        self.assertFalse(summary["changed"])

    def test_disputed_match_never_escalates(self) -> None:
        """Disputes stop the clock."""
        self.seed_tournament()
        self.seed_singles()
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        MatchService.dispute_score(self.db, "m1", "bob", "wrong_score", now=T0)
        MatchService.escalate(self.db, "m1", now=hours(100))
        self.assertEqual(self.match()["status"], "disputed")

    def test_get_match_escalates_lazily(self) -> None:
        """Reading a match applies any due escalation."""
        self.seed_tournament()
        self.seed_singles()
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)

        pending = MatchService.get_match(self.db, "m1", now=hours(2))
        self.assertEqual(pending["status"], "pending_confirmation")
        self.assertAlmostEqual(pending["hoursUntilAutoFinalize"], 22.0)

        final = MatchService.get_match(self.db, "m1", now=hours(25))
        self.assertEqual(final["status"], "completed")
        self.assertNotIn("hoursUntilAutoFinalize", final)

    def test_sweep_tournament(self) -> None:
        """The sweep finalizes every overdue match of the tournament."""
        self.seed_tournament()
        self.seed_singles()
        self.seed_match(
            "m3", side("team-c", "carol"), side("team-d", "dave"), matchNumber=2
        )
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        MatchService.submit_score(self.db, "m3", [11], [2], "carol", now=hours(20))

        result = MatchService.escalate_pending_matches(self.db, "t1", now=hours(25))
        self.assertEqual(result["finalized"], ["m1"])
        self.assertEqual(result["needsReview"], [])
        self.assertEqual(self.match("m3")["status"], "pending_confirmation")


class PostCompletionTestCase(LifecycleTestCase):
    """Tests that secondary effects never undo a completed match."""

    def setUp(self) -> None:
        """Set up a pool match that also feeds a bracket match."""
        super().setUp()
        self.seed_tournament()
        self.seed_singles(
            stage="pool", poolKey="pool-a", nextMatchId="m2", nextMatchSlot="sideB"
        )
        self.seed_match("m2", side("team-carol", "carol"), None, roundNumber=2)

    def test_pool_rebuild_failure_is_contained(self) -> None:
        """A failing standings rebuild leaves the result and advancement intact."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        with patch(
            "courtkeeper.tournament.pools.PoolService.rebuild_pool_results",
            side_effect=RuntimeError("quota exceeded"),
        ), self.assertLogs("courtkeeper.tournament.pools", "ERROR") as logs:
            summary = MatchService.confirm_score(self.db, "m1", "bob", now=T0)

        self.assertIn("quota exceeded", logs.output[0])
        self.assertFalse(summary["postCompletion"]["poolStandingsUpdated"])
        self.assertEqual(self.match()["status"], "completed")
        self.assertEqual(self.match()["winnerId"], "team-alice")
        self.assertEqual(self.match("m2")["sideB"]["id"], "team-alice")

    def test_pool_updater_raising_is_contained(self) -> None:
        """Even an updater that raises cannot fail the confirmation."""
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        with patch(
            "courtkeeper.tournament.pools.PoolService."
            "update_pool_results_on_match_complete",
            side_effect=RuntimeError("boom"),
        ), self.assertLogs("courtkeeper.match.lifecycle", "ERROR"):
            summary = MatchService.confirm_score(self.db, "m1", "bob", now=T0)

        self.assertTrue(summary["final"])
        self.assertEqual(self.match()["status"], "completed")
        self.assertEqual(self.match("m2")["sideB"]["id"], "team-alice")

    def test_bracket_violation_reported_not_raised(self) -> None:
        """A filled downstream slot becomes a warning on the response."""
        self.seed_match(
            "m2",
            side("team-carol", "carol"),
            side("team-dan", "dan"),
            roundNumber=2,
        )
        MatchService.submit_score(self.db, "m1", [11], [7], "alice", now=T0)
        summary = MatchService.confirm_score(self.db, "m1", "bob", now=T0)

        self.assertEqual(self.match()["status"], "completed")
        self.assertEqual(len(summary["postCompletion"]["violations"]), 1)
        self.assertEqual(summary["postCompletion"]["violations"][0]["targetMatchId"], "m2")
        self.assertEqual(len(summary["warnings"]), 1)
        self.assertEqual(self.match("m2")["sideB"]["id"], "team-dan")


if __name__ == "__main__":
    unittest.main()
