"""Bracket advancement: move match results into downstream slots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from courtkeeper.core.constants import (
    MATCH_COMPLETED,
    MATCHES_COLLECTION,
    SIDE_A,
    SIDE_B,
    SIDE_SLOTS,
)
from courtkeeper.core.transactions import run_in_transaction, utcnow
from courtkeeper.errors import ConsistencyViolationError, InvalidStateError
from courtkeeper.match.models import MatchSide, is_side_resolved

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)

_SLOT_ALIASES: dict[Any, str] = {
    SIDE_A: SIDE_A,
    SIDE_B: SIDE_B,
    "teamA": SIDE_A,
    "teamB": SIDE_B,
    "team1": SIDE_A,
    "team2": SIDE_B,
    "A": SIDE_A,
    "B": SIDE_B,
    "a": SIDE_A,
    "b": SIDE_B,
    0: SIDE_A,
    1: SIDE_B,
}


def normalize_slot(slot: Any) -> Optional[str]:
    """Map a stored slot value onto a side field name, or None if unset."""
    if slot is None or slot == "":
        return None
    if slot not in _SLOT_ALIASES:
        raise ValueError(f"Unknown bracket slot: {slot!r}")
    return _SLOT_ALIASES[slot]


@dataclass
class AdvancementResult:
    """What an advancement call did to the downstream match."""

    match_id: str
    target_match_id: str
    slot: str
    side_id: str
    written: bool


def resolve_target_slot(
    next_match: dict[str, Any],
    side_id: str,
    preferred_slot: Optional[str],
    match_id: str,
    target_match_id: str,
) -> tuple[str, bool]:
    """Pick the slot to fill on the downstream match.

    Returns the slot name and whether a write is needed. A slot already
    holding this side is a no-op. A slot holding a different side is never
    overwritten.

    Raises:
        ConsistencyViolationError: If no slot can take the side.
    """
    if preferred_slot:
        other = SIDE_B if preferred_slot == SIDE_A else SIDE_A
        current = next_match.get(preferred_slot)
        if is_side_resolved(current):
            if current.get("id") == side_id:
                return preferred_slot, False
            raise ConsistencyViolationError(
                f"Slot {preferred_slot} of match {target_match_id} already holds "
                f"{current.get('id')}; refusing to overwrite with {side_id}.",
                match_id=match_id,
                target_match_id=target_match_id,
                slot=preferred_slot,
            )
        opposite = next_match.get(other)
        if is_side_resolved(opposite) and opposite.get("id") == side_id:
            raise ConsistencyViolationError(
                f"{side_id} already sits in {other} of match {target_match_id}, "
                f"expected {preferred_slot}.",
                match_id=match_id,
                target_match_id=target_match_id,
                slot=preferred_slot,
            )
        return preferred_slot, True

    for slot in SIDE_SLOTS:
        current = next_match.get(slot)
        if is_side_resolved(current) and current.get("id") == side_id:
            return slot, False
    for slot in SIDE_SLOTS:
        if not is_side_resolved(next_match.get(slot)):
            return slot, True
    raise ConsistencyViolationError(
        f"Both slots of match {target_match_id} are filled; cannot place {side_id}.",
        match_id=match_id,
        target_match_id=target_match_id,
        slot=None,
    )


class BracketService:
    """Writes winners and losers into the matches their bracket feeds."""

    @staticmethod
    def _advance_transaction(
        transaction: Transaction,
        next_ref: DocumentReference,
        match_id: str,
        side: MatchSide,
        preferred_slot: Optional[str],
    ) -> AdvancementResult:
        """Re-read the downstream match and fill one slot inside a transaction."""
        snapshot = next_ref.get(transaction=transaction)
        if not snapshot.exists:
            raise ConsistencyViolationError(
                f"Match {match_id} feeds missing match {next_ref.id}.",
                match_id=match_id,
                target_match_id=next_ref.id,
                slot=preferred_slot,
            )
        next_match = snapshot.to_dict() or {}
        slot, needs_write = resolve_target_slot(
            next_match, side.id, preferred_slot, match_id, next_ref.id
        )
        if needs_write:
            # Only the slot field is touched; scores and status stay as they are.
            transaction.update(next_ref, {slot: side.to_dict(), "updatedAt": utcnow()})
        return AdvancementResult(
            match_id=match_id,
            target_match_id=next_ref.id,
            slot=slot,
            side_id=side.id,
            written=needs_write,
        )

    @staticmethod
    def _advance(
        db: Client,
        match: dict[str, Any],
        side_id: Optional[str],
        target_field: str,
        slot_field: str,
    ) -> Optional[AdvancementResult]:
        match_id = match.get("id", "")
        target_id = match.get(target_field)
        if not target_id:
            return None
        if match.get("status") != MATCH_COMPLETED:
            raise InvalidStateError(
                f"Match {match_id} is not completed; bracket advancement refused."
            )

        side = None
        for slot in SIDE_SLOTS:
            candidate = MatchSide.from_dict(match.get(slot))
            if candidate is not None and candidate.id == side_id:
                side = candidate
                break
        if side is None:
            raise ConsistencyViolationError(
                f"Side {side_id} does not play in match {match_id}.",
                match_id=match_id,
                target_match_id=target_id,
                slot=None,
            )

        try:
            preferred_slot = normalize_slot(match.get(slot_field))
        except ValueError as e:
            raise ConsistencyViolationError(
                str(e), match_id=match_id, target_match_id=target_id, slot=None
            ) from e

        next_ref = db.collection(MATCHES_COLLECTION).document(target_id)
        try:
            result = run_in_transaction(
                db,
                BracketService._advance_transaction,
                next_ref,
                match_id,
                side,
                preferred_slot,
            )
        except ConsistencyViolationError as e:
            logger.error(
                f"Bracket consistency violation: match={match_id} "
                f"target={target_id} slot={e.slot} side={side.id}: {e.message}"
            )
            raise

        if result.written:
            logger.info(
                f"Advanced {side.id} from match {match_id} into "
                f"{result.slot} of match {target_id}"
            )
        else:
            logger.info(
                f"{side.id} already in {result.slot} of match {target_id}; "
                "nothing to advance"
            )
        return result

    @staticmethod
    def advance_winner(
        db: Client, match: dict[str, Any], winner_id: Optional[str] = None
    ) -> Optional[AdvancementResult]:
        """Place the winner into the next match, or no-op for a terminal match."""
        return BracketService._advance(
            db,
            match,
            winner_id or match.get("winnerId"),
            "nextMatchId",
            "nextMatchSlot",
        )

    @staticmethod
    def advance_loser(
        db: Client, match: dict[str, Any], loser_id: Optional[str] = None
    ) -> Optional[AdvancementResult]:
        """Place the loser into the consolation or bronze match, if wired."""
        if loser_id is None:
            loser_id = BracketService.get_loser_id(match)
        return BracketService._advance(
            db, match, loser_id, "loserNextMatchId", "loserNextMatchSlot"
        )

    @staticmethod
    def get_loser_id(match: dict[str, Any]) -> Optional[str]:
        """Return the id of the side that did not win."""
        winner_id = match.get("winnerId")
        for slot in SIDE_SLOTS:
            side = match.get(slot) or {}
            if is_side_resolved(side) and side.get("id") != winner_id:
                return side.get("id")
        return None
