"""Data models for the tournament blueprint."""

from __future__ import annotations

from typing import Any, Optional, TypedDict

from courtkeeper.core.types import FirestoreDocument


class VerificationSettingsDict(TypedDict, total=False):
    """Verification policy as stored on a tournament document."""

    entryMode: str
    verificationMethod: str
    autoFinalizeHours: float
    allowDisputes: bool
    organizerEntryIsFinal: bool


class Tournament(FirestoreDocument, total=False):
    """A tournament document in Firestore."""

    name: str
    status: str
    organizer_id: str
    organizerIds: list[str]
    ownerRef: Any
    verificationSettings: VerificationSettingsDict


class PoolAssignment(TypedDict, total=False):
    """The teams drawn into one pool, in seed order."""

    poolName: str
    poolKey: str
    teamIds: list[str]


class Division(FirestoreDocument, total=False):
    """A division document under tournaments/{id}/divisions."""

    name: str
    poolAssignments: list[PoolAssignment]


class PoolStandingRow(TypedDict):
    """One ranked line of a pool table."""

    rank: int
    teamId: str
    name: str
    wins: int
    losses: int
    pf: int
    pa: int
    diff: int
    matchesPlayed: int


class PoolResults(TypedDict, total=False):
    """Stored standings for a pool, derived from its matches."""

    poolKey: str
    divisionId: str
    tournamentId: str
    rows: list[PoolStandingRow]
    matchesUpdatedAtMax: Optional[Any]
    updatedAt: Any
