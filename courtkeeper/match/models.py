"""Data models for the match blueprint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, TypedDict

from courtkeeper.core.constants import (
    DEFAULT_AUTO_FINALIZE_HOURS,
    ENTRY_ANY_PLAYER,
    ENTRY_MODES,
    METHOD_ONE_OPPONENT,
    SIDE_A,
    SIDE_B,
    TBD,
    VERIFICATION_METHODS,
)
from courtkeeper.core.types import FirestoreDocument
from courtkeeper.errors import ValidationError


class GameScoreDict(TypedDict):
    """A single game as stored on a match document."""

    gameNumber: int
    scoreA: int
    scoreB: int


class SideDict(TypedDict, total=False):
    """One side of a match: a team, pair or individual."""

    id: str
    name: str
    playerIds: list[str]


class GameSettings(TypedDict, total=False):
    """Per-match game format."""

    bestOf: int
    pointsPerGame: int
    winBy: int


class MatchVerificationData(TypedDict, total=False):
    """Verification bookkeeping embedded on a match document."""

    verificationStatus: str
    confirmations: list[str]
    requiredConfirmations: int
    submittedAt: Any
    submittedByUserId: str
    disputedAt: Any
    disputedByUserId: str
    disputeReason: str
    disputeNotes: str
    finalizedAt: Any
    finalizedByUserId: Optional[str]
    autoFinalized: bool
    needsReview: bool
    resolution: str
    resolvedBy: str
    resolvedAt: Any


class Match(FirestoreDocument, total=False):
    """A match document in Firestore."""

    tournamentId: str
    divisionId: str
    stage: str
    roundNumber: int
    matchNumber: int
    poolGroup: str
    poolKey: str
    sideA: Optional[SideDict]
    sideB: Optional[SideDict]
    nextMatchId: Optional[str]
    nextMatchSlot: Optional[str]
    loserNextMatchId: Optional[str]
    loserNextMatchSlot: Optional[str]
    scores: list[GameScoreDict]
    winnerId: Optional[str]
    status: str
    gameSettings: GameSettings
    verification: MatchVerificationData
    activeSubmissionId: Optional[str]
    completedAt: Any


class ScoreSubmission(FirestoreDocument, total=False):
    """A proposed result for a match."""

    matchId: str
    tournamentId: str
    submittedBy: str
    sideAId: str
    sideBId: str
    scores: list[GameScoreDict]
    winnerId: str
    status: str
    respondedAt: Any
    respondedBy: str
    reasonRejected: str


@dataclass(frozen=True)
class GameScore:
    """Points scored by each side in one game."""

    game_number: int
    score_a: int
    score_b: int

    def to_dict(self) -> GameScoreDict:
        """Return the Firestore representation of this game."""
        return {
            "gameNumber": self.game_number,
            "scoreA": self.score_a,
            "scoreB": self.score_b,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameScore:
        """Build a game from a stored score record."""
        return cls(
            game_number=data.get("gameNumber", 0),
            score_a=data.get("scoreA"),
            score_b=data.get("scoreB"),
        )


@dataclass
class MatchSide:
    """A resolved side of a match."""

    id: str
    name: str = ""
    player_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> SideDict:
        """Return the identity payload written into a bracket slot."""
        return {"id": self.id, "name": self.name, "playerIds": list(self.player_ids)}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional[MatchSide]:
        """Build a side, returning None while the side is still unresolved."""
        if data is None or not is_side_resolved(data):
            return None
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            player_ids=list(data.get("playerIds") or []),
        )


def is_side_resolved(side: Optional[dict[str, Any]]) -> bool:
    """Return True if the slot holds a real team rather than a placeholder."""
    if not side:
        return False
    side_id = side.get("id")
    return bool(side_id) and side_id != TBD


@dataclass(frozen=True)
class EvaluatedResult:
    """The outcome derived from a validated score payload."""

    winner_side_id: str
    games_won_a: int
    games_won_b: int
    games: tuple[GameScore, ...] = ()

    @property
    def loser_side_id(self) -> str:
        """Return the slot name of the losing side."""
        return SIDE_B if self.winner_side_id == SIDE_A else SIDE_A

    def scores_as_dicts(self) -> list[GameScoreDict]:
        """Return the games in Firestore form."""
        return [game.to_dict() for game in self.games]


@dataclass(frozen=True)
class VerificationSettings:
    """Per-tournament policy for how a submitted score becomes final."""

    entry_mode: str = ENTRY_ANY_PLAYER
    verification_method: str = METHOD_ONE_OPPONENT
    auto_finalize_hours: float = DEFAULT_AUTO_FINALIZE_HOURS
    allow_disputes: bool = True
    organizer_entry_is_final: bool = True

    def validate(self) -> None:
        """Validate the policy values."""
        if self.entry_mode not in ENTRY_MODES:
            raise ValidationError(f"Unknown entry mode: {self.entry_mode}")
        if self.verification_method not in VERIFICATION_METHODS:
            raise ValidationError(
                f"Unknown verification method: {self.verification_method}"
            )
        if self.auto_finalize_hours < 0:
            raise ValidationError("Auto-finalize hours cannot be negative.")

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> VerificationSettings:
        """Merge stored settings over the defaults."""
        data = data or {}
        defaults = cls()
        hours = data.get("autoFinalizeHours")
        settings = cls(
            entry_mode=data.get("entryMode") or defaults.entry_mode,
            verification_method=data.get("verificationMethod")
            or defaults.verification_method,
            auto_finalize_hours=(
                float(hours) if hours is not None else defaults.auto_finalize_hours
            ),
            allow_disputes=data.get("allowDisputes", defaults.allow_disputes),
            organizer_entry_is_final=data.get(
                "organizerEntryIsFinal", defaults.organizer_entry_is_final
            ),
        )
        settings.validate()
        return settings
