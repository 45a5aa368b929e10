"""Pool assignments and pool standings tables."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Optional, cast

from firebase_admin import firestore

from courtkeeper.core.constants import (
    DIVISIONS_COLLECTION,
    MATCH_COMPLETED,
    MATCHES_COLLECTION,
    POOL_RESULTS_COLLECTION,
    SIDE_A,
    SIDE_B,
    STAGE_POOL,
    TOURNAMENTS_COLLECTION,
)
from courtkeeper.core.transactions import utcnow
from courtkeeper.errors import NotFoundError, ValidationError

from .models import PoolAssignment, PoolResults

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference

logger = logging.getLogger(__name__)


def pool_name_to_key(pool_name: str) -> str:
    """Turn "Pool A" into "pool-a"."""
    key = re.sub(r"[^a-z0-9]+", "-", (pool_name or "").strip().lower())
    return key.strip("-")


def get_match_pool_key(match: dict[str, Any]) -> Optional[str]:
    """Return the pool key of a pool-stage match, or None for other stages."""
    if match.get("poolKey"):
        return match["poolKey"]
    if match.get("poolGroup"):
        return pool_name_to_key(match["poolGroup"])
    return None


def validate_pool_assignments(assignments: Iterable[dict[str, Any]]) -> None:
    """Reject assignment sets where a team sits in more than one pool.

    Raises:
        ValidationError: On a blank pool name, a repeated pool or a team
            listed twice.
    """
    seen_teams: dict[str, str] = {}
    seen_pools: set[str] = set()
    for assignment in assignments:
        pool_name = (assignment.get("poolName") or "").strip()
        if not pool_name:
            raise ValidationError("Every pool needs a name.")
        pool_key = pool_name_to_key(pool_name)
        if pool_key in seen_pools:
            raise ValidationError(f"Pool {pool_name} is listed more than once.")
        seen_pools.add(pool_key)
        for team_id in assignment.get("teamIds") or []:
            if team_id in seen_teams:
                raise ValidationError(
                    f"Team {team_id} is assigned to both {seen_teams[team_id]} "
                    f"and {pool_name}."
                )
            seen_teams[team_id] = pool_name


def _side_id(match: dict[str, Any], slot: str) -> Optional[str]:
    return (match.get(slot) or {}).get("id")


def _game_points(match: dict[str, Any]) -> list[tuple[int, int]]:
    points = []
    for game in match.get("scores") or []:
        if not isinstance(game, dict):
            continue
        a = game.get("scoreA")
        b = game.get("scoreB")
        points.append(
            (
                a if isinstance(a, int) and not isinstance(a, bool) else 0,
                b if isinstance(b, int) and not isinstance(b, bool) else 0,
            )
        )
    return points


def _mini_standings(
    team_ids: list[str], matches: list[dict[str, Any]]
) -> dict[str, tuple[int, int]]:
    """Return (wins, point diff) per team counting only games among team_ids."""
    tied = set(team_ids)
    mini = {team_id: [0, 0] for team_id in team_ids}
    for match in matches:
        a = _side_id(match, SIDE_A)
        b = _side_id(match, SIDE_B)
        if a not in tied or b not in tied:
            continue
        winner = match.get("winnerId")
        if winner in mini:
            mini[winner][0] += 1
        for score_a, score_b in _game_points(match):
            mini[a][1] += score_a - score_b
            mini[b][1] += score_b - score_a
    return {team_id: (wins, diff) for team_id, (wins, diff) in mini.items()}


def calculate_pool_standings(
    participants: list[dict[str, Any]], matches: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Rank a pool from its completed matches.

    Order: wins, head-to-head among teams level on wins, point
    differential, points scored, then team id. Disputed and unplayed
    matches are ignored.
    """
    rows: dict[str, dict[str, Any]] = {}
    for participant in participants:
        team_id = participant.get("id")
        if not team_id:
            continue
        rows[team_id] = {
            "teamId": team_id,
            "name": participant.get("name") or f"Team {team_id[:4]}",
            "wins": 0,
            "losses": 0,
            "pf": 0,
            "pa": 0,
            "diff": 0,
            "matchesPlayed": 0,
        }

    completed = [m for m in matches if m.get("status") == MATCH_COMPLETED]
    for match in completed:
        a = _side_id(match, SIDE_A)
        b = _side_id(match, SIDE_B)
        if a not in rows or b not in rows:
            continue
        for score_a, score_b in _game_points(match):
            rows[a]["pf"] += score_a
            rows[a]["pa"] += score_b
            rows[b]["pf"] += score_b
            rows[b]["pa"] += score_a
        winner = match.get("winnerId")
        if winner == a:
            rows[a]["wins"] += 1
            rows[b]["losses"] += 1
        elif winner == b:
            rows[b]["wins"] += 1
            rows[a]["losses"] += 1
        rows[a]["matchesPlayed"] += 1
        rows[b]["matchesPlayed"] += 1

    for row in rows.values():
        row["diff"] = row["pf"] - row["pa"]

    by_wins: dict[int, list[str]] = {}
    for row in rows.values():
        by_wins.setdefault(row["wins"], []).append(row["teamId"])
    head_to_head: dict[str, tuple[int, int]] = {}
    for team_ids in by_wins.values():
        if len(team_ids) > 1:
            head_to_head.update(_mini_standings(team_ids, completed))

    def sort_key(row: dict[str, Any]) -> tuple[Any, ...]:
        mini_wins, mini_diff = head_to_head.get(row["teamId"], (0, 0))
        return (
            -row["wins"],
            -mini_wins,
            -mini_diff,
            -row["diff"],
            -row["pf"],
            row["teamId"],
        )

    ranked = sorted(rows.values(), key=sort_key)
    for rank, row in enumerate(ranked, start=1):
        row["rank"] = rank
    return ranked


def _latest_update(matches: list[dict[str, Any]]) -> Any:
    stamps = [m.get("updatedAt") for m in matches if m.get("updatedAt") is not None]
    return max(stamps) if stamps else None


class PoolService:
    """Reads and writes pool assignments and derived pool standings."""

    @staticmethod
    def _division_ref(
        db: Client, tournament_id: str, division_id: str
    ) -> DocumentReference:
        return (
            db.collection(TOURNAMENTS_COLLECTION)
            .document(tournament_id)
            .collection(DIVISIONS_COLLECTION)
            .document(division_id)
        )

    @staticmethod
    def get_pool_assignments(
        db: Client, tournament_id: str, division_id: str
    ) -> list[PoolAssignment]:
        """Return the division's validated pool assignments."""
        doc = PoolService._division_ref(db, tournament_id, division_id).get()
        if not doc.exists:
            raise NotFoundError(f"Division {division_id} not found.")
        assignments = (doc.to_dict() or {}).get("poolAssignments") or []
        validate_pool_assignments(assignments)
        return assignments

    @staticmethod
    def save_pool_assignments(
        db: Client,
        tournament_id: str,
        division_id: str,
        assignments: list[dict[str, Any]],
    ) -> None:
        """Validate and store the pool assignments for a division."""
        validate_pool_assignments(assignments)
        cleaned = [
            {
                "poolName": a["poolName"].strip(),
                "poolKey": pool_name_to_key(a["poolName"]),
                "teamIds": list(a.get("teamIds") or []),
            }
            for a in assignments
        ]
        PoolService._division_ref(db, tournament_id, division_id).set(
            {"poolAssignments": cleaned, "updatedAt": utcnow()}, merge=True
        )
        logger.info(
            f"Saved {len(cleaned)} pools for division {division_id} "
            f"of tournament {tournament_id}"
        )

    @staticmethod
    def fetch_pool_matches(
        db: Client, tournament_id: str, division_id: str, pool_key: str
    ) -> list[dict[str, Any]]:
        """Return every match of one pool, falling back to the pool name field."""
        base = (
            db.collection(MATCHES_COLLECTION)
            .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
            .where(filter=firestore.FieldFilter("divisionId", "==", division_id))
        )
        docs = list(
            base.where(filter=firestore.FieldFilter("poolKey", "==", pool_key)).stream()
        )
        if not docs:
            docs = [
                doc
                for doc in base.where(
                    filter=firestore.FieldFilter("stage", "==", STAGE_POOL)
                ).stream()
                if pool_name_to_key((doc.to_dict() or {}).get("poolGroup", ""))
                == pool_key
            ]
        matches = []
        for doc in docs:
            data = doc.to_dict() or {}
            data["id"] = doc.id
            matches.append(data)
        return matches

    @staticmethod
    def _pool_participants(
        assignments: list[dict[str, Any]],
        pool_key: str,
        matches: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        names: dict[str, str] = {}
        for match in matches:
            for slot in (SIDE_A, SIDE_B):
                side = match.get(slot) or {}
                if side.get("id"):
                    names.setdefault(side["id"], side.get("name") or "")

        team_ids: list[str] = []
        for assignment in assignments:
            if pool_name_to_key(assignment.get("poolName", "")) == pool_key:
                team_ids = list(assignment.get("teamIds") or [])
                break
        if not team_ids:
            team_ids = list(names)
        return [{"id": team_id, "name": names.get(team_id, "")} for team_id in team_ids]

    @staticmethod
    def rebuild_pool_results(
        db: Client, tournament_id: str, division_id: str, pool_key: str
    ) -> Optional[list[dict[str, Any]]]:
        """Recompute and store one pool's standings.

        Returns the rows written, or None when the stored table is already
        at least as recent as the pool's matches. Errors propagate.
        """
        assignments = PoolService.get_pool_assignments(db, tournament_id, division_id)
        matches = PoolService.fetch_pool_matches(
            db, tournament_id, division_id, pool_key
        )
        watermark = _latest_update(matches)

        results_ref = (
            PoolService._division_ref(db, tournament_id, division_id)
            .collection(POOL_RESULTS_COLLECTION)
            .document(pool_key)
        )
        existing = results_ref.get()
        if existing.exists and watermark is not None:
            stored = (existing.to_dict() or {}).get("matchesUpdatedAtMax")
            if stored is not None and stored >= watermark:
                logger.info(f"Pool {pool_key} standings already current; skipping")
                return None

        participants = PoolService._pool_participants(assignments, pool_key, matches)
        rows = calculate_pool_standings(participants, matches)
        results_ref.set(
            {
                "poolKey": pool_key,
                "divisionId": division_id,
                "tournamentId": tournament_id,
                "rows": rows,
                "matchesUpdatedAtMax": watermark,
                "updatedAt": utcnow(),
            }
        )
        logger.info(
            f"Rebuilt pool {pool_key} standings for division {division_id} "
            f"({len(rows)} teams, {len(matches)} matches)"
        )
        return rows

    @staticmethod
    def update_pool_results_on_match_complete(
        db: Client, tournament_id: str, division_id: str, match: dict[str, Any]
    ) -> bool:
        """Refresh the pool table after a pool match completes.

        Best-effort: the match document stays authoritative, so any failure
        is logged and reported as False instead of raised.
        """
        pool_key = get_match_pool_key(match)
        if not pool_key or match.get("stage", STAGE_POOL) != STAGE_POOL:
            return False
        try:
            PoolService.rebuild_pool_results(db, tournament_id, division_id, pool_key)
        except Exception as e:
            logger.error(
                f"Pool standings update failed for match {match.get('id')} "
                f"(tournament={tournament_id} division={division_id} "
                f"pool={pool_key}): {e}"
            )
            return False
        return True

    @staticmethod
    def get_pool_results(
        db: Client, tournament_id: str, division_id: str, pool_key: str
    ) -> PoolResults:
        """Return the stored standings table for a pool."""
        doc = (
            PoolService._division_ref(db, tournament_id, division_id)
            .collection(POOL_RESULTS_COLLECTION)
            .document(pool_key)
            .get()
        )
        if not doc.exists:
            raise NotFoundError(f"No standings stored for pool {pool_key}.")
        return cast(PoolResults, doc.to_dict() or {})
