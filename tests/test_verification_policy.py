"""Tests for the verification policy rules."""

from __future__ import annotations

import datetime
import unittest

from courtkeeper.errors import ValidationError
from courtkeeper.match.models import VerificationSettings
from courtkeeper.match.verification import (
    can_user_confirm,
    confirmation_quorum,
    get_required_confirmations,
    hours_until_auto_finalize,
    requires_organizer_review,
    should_auto_finalize,
)

SINGLES = {
    "sideA": {"id": "ta", "playerIds": ["alice"]},
    "sideB": {"id": "tb", "playerIds": ["bob"]},
}
DOUBLES = {
    "sideA": {"id": "ta", "playerIds": ["alice", "ann"]},
    "sideB": {"id": "tb", "playerIds": ["bob", "ben"]},
}
NOW = datetime.datetime(2024, 5, 5, 12, 0, tzinfo=datetime.timezone.utc)


class VerificationSettingsTestCase(unittest.TestCase):
    """Test case for parsing stored policy."""

    def test_defaults(self) -> None:
        """Missing settings fall back to the defaults."""
        settings = VerificationSettings.from_dict(None)
        self.assertEqual(settings.entry_mode, "any_player")
        self.assertEqual(settings.verification_method, "one_opponent")
        self.assertEqual(settings.auto_finalize_hours, 24)
        self.assertTrue(settings.allow_disputes)

    def test_stored_values_override(self) -> None:
        """Stored camelCase fields are read."""
        settings = VerificationSettings.from_dict(
            {"verificationMethod": "majority", "autoFinalizeHours": 0, "allowDisputes": False}
        )
        self.assertEqual(settings.verification_method, "majority")
        self.assertEqual(settings.auto_finalize_hours, 0)
        self.assertFalse(settings.allow_disputes)

    def test_unknown_method_rejected(self) -> None:
        """Unknown enum values are a validation error."""
        with self.assertRaises(ValidationError):
            VerificationSettings.from_dict({"verificationMethod": "coin_flip"})


class RequiredConfirmationsTestCase(unittest.TestCase):
    """Test case for the confirmation count per method."""

    def test_counts(self) -> None:
        """Each method yields its canonical count."""
        cases = [
            ("auto_confirm", SINGLES, 0),
            ("one_opponent", SINGLES, 1),
            ("one_opponent", DOUBLES, 1),
            ("majority", SINGLES, 1),
            ("majority", DOUBLES, 2),
            ("organizer_only", DOUBLES, 1),
        ]
        for method, match, expected in cases:
            with self.subTest(method=method, players=len(match["sideA"]["playerIds"])):
                settings = VerificationSettings(verification_method=method)
                self.assertEqual(get_required_confirmations(settings, match), expected)

    def test_quorum_capped_by_opposing_side(self) -> None:
        """A majority cannot ask for more confirmers than the other side has."""
        uneven = {
            "sideA": {"id": "ta", "playerIds": ["alice", "ann", "amy"]},
            "sideB": {"id": "tb", "playerIds": ["bob"]},
        }
        settings = VerificationSettings(verification_method="majority")
        self.assertEqual(get_required_confirmations(settings, uneven), 2)
        self.assertEqual(confirmation_quorum(settings, uneven, "alice"), 1)


class CanUserConfirmTestCase(unittest.TestCase):
    """Test case for who may acknowledge a score."""

    def setUp(self) -> None:
        """Set up the default policy."""
        self.settings = VerificationSettings()

    def test_submitter_cannot_confirm(self) -> None:
        """Self-acknowledgement is refused."""
        allowed, _ = can_user_confirm(self.settings, SINGLES, "alice", "alice")
        self.assertFalse(allowed)

    def test_partner_cannot_confirm(self) -> None:
        """The submitter's partner is on the same side."""
        allowed, reason = can_user_confirm(self.settings, DOUBLES, "alice", "ann")
        self.assertFalse(allowed)
        self.assertIn("opposing", reason)

    def test_opponent_can_confirm(self) -> None:
        """An opponent may confirm."""
        allowed, _ = can_user_confirm(self.settings, DOUBLES, "alice", "ben")
        self.assertTrue(allowed)

    def test_outsider_cannot_confirm(self) -> None:
        """Spectators are refused."""
        allowed, _ = can_user_confirm(self.settings, SINGLES, "alice", "carol")
        self.assertFalse(allowed)

    def test_organizer_only_method(self) -> None:
        """Only organizers confirm under the organizer_only method."""
        settings = VerificationSettings(verification_method="organizer_only")
        self.assertFalse(can_user_confirm(settings, SINGLES, "alice", "bob")[0])
        self.assertTrue(
            can_user_confirm(settings, SINGLES, "alice", "org", is_organizer=True)[0]
        )


class AutoFinalizeTestCase(unittest.TestCase):
    """Test case for the escalation window."""

    def verification(self, hours_ago: float, status: str = "pending") -> dict:
        return {
            "verificationStatus": status,
            "submittedAt": NOW - datetime.timedelta(hours=hours_ago),
        }

    def test_window(self) -> None:
        """Escalation is due exactly when the window has elapsed."""
        settings = VerificationSettings(auto_finalize_hours=24)
        self.assertFalse(should_auto_finalize(settings, self.verification(23.9), NOW))
        self.assertTrue(should_auto_finalize(settings, self.verification(24), NOW))

    def test_disabled_when_zero_hours(self) -> None:
        """Zero hours turns escalation off."""
        settings = VerificationSettings(auto_finalize_hours=0)
        self.assertFalse(should_auto_finalize(settings, self.verification(500), NOW))
        self.assertIsNone(hours_until_auto_finalize(settings, self.verification(1), NOW))

    def test_disputed_never_escalates(self) -> None:
        """A dispute stops the clock."""
        settings = VerificationSettings()
        self.assertFalse(
            should_auto_finalize(settings, self.verification(48, "disputed"), NOW)
        )

    def test_naive_timestamp_treated_as_utc(self) -> None:
        """Stored naive datetimes are read as UTC."""
        settings = VerificationSettings(auto_finalize_hours=1)
        verification = {
            "verificationStatus": "pending",
            "submittedAt": datetime.datetime(2024, 5, 5, 10, 0),
        }
        self.assertTrue(should_auto_finalize(settings, verification, NOW))
        self.assertEqual(hours_until_auto_finalize(settings, verification, NOW), 0.0)

    def test_organizer_review_policies(self) -> None:
        """Organizer-only entry or method routes escalation to review."""
        self.assertTrue(requires_organizer_review(VerificationSettings(entry_mode="organizer_only")))
        self.assertTrue(
            requires_organizer_review(
                VerificationSettings(verification_method="organizer_only")
            )
        )
        self.assertFalse(requires_organizer_review(VerificationSettings()))
