"""Score validation and winner derivation for submitted match results."""

from __future__ import annotations

import numbers
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from courtkeeper.core.constants import SIDE_A, SIDE_B
from courtkeeper.errors import InvalidScoreError, TiedResultError

from .models import EvaluatedResult, GameScore, GameSettings


def _coerce_points(value: Any, label: str) -> int:
    """Return the value as a non-negative int or raise InvalidScoreError."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidScoreError(f"{label} must be a number.")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidScoreError(f"{label} must be a whole number.")
    points = int(value)
    if points < 0:
        raise InvalidScoreError(f"{label} cannot be negative.")
    return points


def build_games(scores_a: Sequence[Any], scores_b: Sequence[Any]) -> list[GameScore]:
    """Pair up per-side point lists into numbered games."""
    if len(scores_a) != len(scores_b):
        raise InvalidScoreError("Both sides must have a score for every game.")
    if not scores_a:
        raise InvalidScoreError("At least one game score is required.")
    games = []
    for index, (a, b) in enumerate(zip(scores_a, scores_b), start=1):
        games.append(
            GameScore(
                game_number=index,
                score_a=_coerce_points(a, f"Game {index} side A score"),
                score_b=_coerce_points(b, f"Game {index} side B score"),
            )
        )
    return games


def coerce_games(raw: Iterable[Any]) -> list[GameScore]:
    """Normalize GameScore objects, stored dicts or (a, b) pairs into games."""
    items = list(raw)
    if len(items) == 2 and all(  # noqa: PLR2004
        isinstance(x, numbers.Real) and not isinstance(x, bool) for x in items
    ):
        items = [tuple(items)]

    games = []
    for index, item in enumerate(items, start=1):
        if isinstance(item, GameScore):
            a, b = item.score_a, item.score_b
        elif isinstance(item, dict):
            a, b = item.get("scoreA"), item.get("scoreB")
        elif isinstance(item, (list, tuple)) and len(item) == 2:  # noqa: PLR2004
            a, b = item
        else:
            raise InvalidScoreError(f"Game {index} is not a score pair.")
        games.append(
            GameScore(
                game_number=index,
                score_a=_coerce_points(a, f"Game {index} side A score"),
                score_b=_coerce_points(b, f"Game {index} side B score"),
            )
        )
    if not games:
        raise InvalidScoreError("At least one game score is required.")
    return games


def validate_game_points(game: GameScore, settings: GameSettings) -> None:
    """Enforce the winning score and margin for a single game."""
    points_to_win = settings.get("pointsPerGame")
    if not points_to_win:
        return
    win_by = settings.get("winBy") or 1
    high = max(game.score_a, game.score_b)
    low = min(game.score_a, game.score_b)
    if high < points_to_win:
        raise InvalidScoreError(
            f"Game {game.game_number}: the winner must reach {points_to_win} points."
        )
    if high - low < win_by:
        raise InvalidScoreError(
            f"Game {game.game_number}: the winner must win by {win_by}."
        )
    if high > points_to_win and high - low != win_by:
        raise InvalidScoreError(
            f"Game {game.game_number}: extended games end at a {win_by}-point margin."
        )


def evaluate_games(
    games: Sequence[GameScore], settings: Optional[GameSettings] = None
) -> EvaluatedResult:
    """Count games won per side and derive the match winner.

    The winner is the side with strictly more games, regardless of who
    took game one. Every game must have a winner.

    Raises:
        InvalidScoreError: If a score is malformed or the games do not fit
            the match format.
        TiedResultError: If both sides won the same number of games.
    """
    settings = settings or {}
    if not games:
        raise InvalidScoreError("At least one game score is required.")

    best_of = settings.get("bestOf")
    if best_of and len(games) > best_of:
        raise InvalidScoreError(
            f"A best-of-{best_of} match cannot have {len(games)} games."
        )
    games_to_win = best_of // 2 + 1 if best_of else None

    games_won_a = 0
    games_won_b = 0
    for game in games:
        _coerce_points(game.score_a, f"Game {game.game_number} side A score")
        _coerce_points(game.score_b, f"Game {game.game_number} side B score")
        if game.score_a == game.score_b:
            raise InvalidScoreError(f"Game {game.game_number} cannot end in a tie.")
        if games_to_win and max(games_won_a, games_won_b) >= games_to_win:
            raise InvalidScoreError(
                f"Game {game.game_number} was played after the match was decided."
            )
        validate_game_points(game, settings)
        if game.score_a > game.score_b:
            games_won_a += 1
        else:
            games_won_b += 1

    if games_won_a == games_won_b:
        raise TiedResultError(
            f"Games won are tied {games_won_a}-{games_won_b}; "
            "submit a decisive result."
        )
    if games_to_win and max(games_won_a, games_won_b) < games_to_win:
        raise InvalidScoreError(
            f"A best-of-{best_of} match needs {games_to_win} games to win."
        )

    return EvaluatedResult(
        winner_side_id=SIDE_A if games_won_a > games_won_b else SIDE_B,
        games_won_a=games_won_a,
        games_won_b=games_won_b,
        games=tuple(games),
    )


def evaluate_score(
    scores_a: Sequence[Any],
    scores_b: Sequence[Any],
    settings: Optional[GameSettings] = None,
) -> EvaluatedResult:
    """Validate raw per-side point lists and return the evaluated result."""
    return evaluate_games(build_games(scores_a, scores_b), settings)


def format_match_score(games: Iterable[Any]) -> str:
    """Render games as "11-7, 9-11, 11-8"."""
    parts = []
    for game in games:
        if isinstance(game, GameScore):
            parts.append(f"{game.score_a}-{game.score_b}")
        else:
            parts.append(f"{game.get('scoreA')}-{game.get('scoreB')}")
    return ", ".join(parts)
