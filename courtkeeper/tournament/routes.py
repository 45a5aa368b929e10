"""Routes for the tournament blueprint."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import g, jsonify, request
from werkzeug.datastructures import MultiDict

from courtkeeper.auth.decorators import login_required
from courtkeeper.match.services import MatchService

from . import bp
from .forms import PoolAssignmentForm
from .pools import PoolService
from .services import TournamentService


def _require_organizer(db: Any, tournament_id: str) -> None:
    tournament = TournamentService.get_tournament(db, tournament_id)
    TournamentService.require_organizer(
        tournament, g.user["uid"], bool(g.user.get("isAdmin"))
    )


@bp.route("/<string:tournament_id>/escalate", methods=["POST"])
@login_required
def escalate_pending(tournament_id: str) -> Any:
    """Apply due auto-finalization to every pending match of the tournament."""
    db = firestore.client()
    _require_organizer(db, tournament_id)
    return jsonify(MatchService.escalate_pending_matches(db, tournament_id))


@bp.route(
    "/<string:tournament_id>/divisions/<string:division_id>/pools/<string:pool_key>",
    methods=["GET"],
)
@login_required
def pool_standings(tournament_id: str, division_id: str, pool_key: str) -> Any:
    """Return the stored standings table for a pool."""
    db = firestore.client()
    return jsonify(
        PoolService.get_pool_results(db, tournament_id, division_id, pool_key)
    )


@bp.route(
    "/<string:tournament_id>/divisions/<string:division_id>/pools/<string:pool_key>/rebuild",
    methods=["POST"],
)
@login_required
def rebuild_pool_standings(tournament_id: str, division_id: str, pool_key: str) -> Any:
    """Recompute a pool table, e.g. after a failed background update."""
    db = firestore.client()
    _require_organizer(db, tournament_id)
    rows = PoolService.rebuild_pool_results(db, tournament_id, division_id, pool_key)
    return jsonify({"poolKey": pool_key, "rebuilt": rows is not None, "rows": rows or []})


@bp.route(
    "/<string:tournament_id>/divisions/<string:division_id>/pools", methods=["POST"]
)
@login_required
def save_pools(tournament_id: str, division_id: str) -> Any:
    """Store the division's pool assignments."""
    if request.is_json:
        payload = request.get_json(silent=True) or {}
        form = PoolAssignmentForm(formdata=MultiDict({"pools": payload.get("pools", "")}))
    else:
        form = PoolAssignmentForm()
    if not form.validate():
        return jsonify({"error": "Invalid input.", "fields": form.errors}), 400

    db = firestore.client()
    _require_organizer(db, tournament_id)
    assignments = form.assignments()
    PoolService.save_pool_assignments(db, tournament_id, division_id, assignments)
    return jsonify({"pools": len(assignments)}), 201
