"""Seed data helpers for match lifecycle tests."""

from __future__ import annotations

import datetime
from typing import Any, Optional

from tests.mock_utils import FirestoreTestCase

T0 = datetime.datetime(2024, 5, 4, 9, 0, tzinfo=datetime.timezone.utc)


def side(side_id: str, *player_ids: str, name: Optional[str] = None) -> dict[str, Any]:
    """Build a side payload."""
    return {"id": side_id, "name": name or side_id.title(), "playerIds": list(player_ids)}


class LifecycleTestCase(FirestoreTestCase):
    """Firestore-backed case with a tournament, a division and bracket matches."""

    tournament_id = "t1"
    division_id = "d1"
    organizer_id = "org"

    def seed_tournament(self, **settings: Any) -> None:
        """Create the tournament with the given verification settings."""
        self.db.collection("tournaments").document(self.tournament_id).set(
            {
                "name": "Spring Open",
                "organizer_id": self.organizer_id,
                "verificationSettings": settings,
            }
        )
        self.db.collection("users").document(self.organizer_id).set(
            {"name": "Organizer", "email": "org@example.com"}
        )

    def seed_match(
        self,
        match_id: str,
        side_a: Optional[dict[str, Any]] = None,
        side_b: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> None:
        """Create a scheduled match."""
        data = {
            "tournamentId": self.tournament_id,
            "divisionId": self.division_id,
            "stage": "bracket",
            "poolKey": None,
            "roundNumber": 1,
            "matchNumber": 1,
            "sideA": side_a,
            "sideB": side_b,
            "scores": [],
            "winnerId": None,
            "status": "scheduled",
            "activeSubmissionId": None,
            "updatedAt": T0,
        }
        data.update(fields)
        self.db.collection("matches").document(match_id).set(data)

    def seed_singles(self, **fields: Any) -> None:
        """Alice (side A) against Bob (side B), feeding match m2."""
        self.seed_match(
            "m1",
            side("team-alice", "alice", name="Alice"),
            side("team-bob", "bob", name="Bob"),
            **fields,
        )

    def seed_doubles(self, **fields: Any) -> None:
        """Alice and Ann (side A) against Bob and Ben (side B)."""
        self.seed_match(
            "m1",
            side("team-a", "alice", "ann"),
            side("team-b", "bob", "ben"),
            **fields,
        )

    def match(self, match_id: str = "m1") -> dict[str, Any]:
        """Return a stored match."""
        return self.doc("matches", match_id)
