"""Secondary effects that follow a match reaching its final result.

The completion commit is the primary transition. Everything here runs
after it as separate writes, and no failure here may undo it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from courtkeeper.core.constants import MATCH_COMPLETED, MATCHES_COLLECTION
from courtkeeper.errors import ConsistencyViolationError
from courtkeeper.notifications import notify_users
from courtkeeper.tournament.bracket import AdvancementResult, BracketService
from courtkeeper.tournament.pools import PoolService, get_match_pool_key

from .scoring import format_match_score
from .verification import participant_ids

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

logger = logging.getLogger(__name__)


@dataclass
class PostCompletionReport:
    """Outcome of the effects that run after a match completes."""

    match_id: str
    advancements: list[AdvancementResult] = field(default_factory=list)
    violations: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    pool_standings_updated: Optional[bool] = None

    @property
    def warnings(self) -> list[str]:
        """Messages an organizer needs to act on."""
        return [v["message"] for v in self.violations] + list(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the report for API responses."""
        return {
            "advanced": [
                {"targetMatchId": a.target_match_id, "slot": a.slot, "written": a.written}
                for a in self.advancements
            ],
            "violations": self.violations,
            "poolStandingsUpdated": self.pool_standings_updated,
            "warnings": self.warnings,
        }


class MatchLifecycle:
    """Runs bracket advancement, pool standings and notifications."""

    @staticmethod
    def _advance(
        db: Client, match: dict[str, Any], report: PostCompletionReport, loser: bool
    ) -> None:
        target_field = "loserNextMatchId" if loser else "nextMatchId"
        if not match.get(target_field):
            return
        try:
            if loser:
                result = BracketService.advance_loser(db, match)
            else:
                result = BracketService.advance_winner(db, match)
        except ConsistencyViolationError as e:
            report.violations.append(e.to_dict())
            return
        except Exception as e:
            logger.error(
                f"Bracket advancement failed for match {match.get('id')} "
                f"(target={match.get(target_field)}): {e}"
            )
            report.errors.append(
                f"Could not advance into match {match.get(target_field)}: {e}"
            )
            return
        if result is not None:
            report.advancements.append(result)

    @staticmethod
    def _update_pool(
        db: Client, match: dict[str, Any], report: PostCompletionReport
    ) -> None:
        if not get_match_pool_key(match):
            return
        try:
            report.pool_standings_updated = (
                PoolService.update_pool_results_on_match_complete(
                    db, match.get("tournamentId"), match.get("divisionId"), match
                )
            )
        except Exception as e:
            logger.error(
                f"Pool standings update raised for match {match.get('id')}: {e}"
            )
            report.pool_standings_updated = False

    @staticmethod
    def run_post_completion(db: Client, match_id: str) -> PostCompletionReport:
        """Propagate a completed match into the structures that depend on it."""
        report = PostCompletionReport(match_id=match_id)
        try:
            doc = db.collection(MATCHES_COLLECTION).document(match_id).get()
        except Exception as e:
            logger.error(f"Could not re-read completed match {match_id}: {e}")
            report.errors.append(f"Could not reload match {match_id}.")
            return report
        if not doc.exists:
            report.errors.append(f"Match {match_id} disappeared after completion.")
            return report

        match = doc.to_dict() or {}
        match["id"] = doc.id
        if match.get("status") != MATCH_COMPLETED:
            logger.warning(
                f"Skipping post-completion for match {match_id} "
                f"in status {match.get('status')}"
            )
            return report

        MatchLifecycle._advance(db, match, report, loser=False)
        MatchLifecycle._advance(db, match, report, loser=True)
        MatchLifecycle._update_pool(db, match, report)

        notify_users(
            db,
            participant_ids(match),
            "Match result final",
            f"Final score: {format_match_score(match.get('scores') or [])}",
            "match_final",
            match_id=match_id,
        )
        return report
