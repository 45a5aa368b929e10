"""Routes for the match blueprint."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import current_app, g, jsonify, request
from werkzeug.datastructures import MultiDict

from courtkeeper.auth.decorators import login_required

from . import bp
from .disputes import DisputeService
from .forms import ConfirmForm, DisputeForm, ResolveDisputeForm, ScoreForm
from .services import MatchService


def _json_formdata() -> MultiDict:
    """Flatten a JSON body so list values bind to comma separated fields."""
    payload = request.get_json(silent=True) or {}
    data = {}
    for key, value in payload.items():
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        data[key] = value
    return MultiDict(data)


def _bind(form_class: Any) -> Any:
    if request.is_json:
        return form_class(formdata=_json_formdata())
    return form_class()


def _invalid(form: Any) -> Any:
    return jsonify({"error": "Invalid input.", "fields": form.errors}), 400


def _caller() -> tuple[str, bool]:
    return g.user["uid"], bool(g.user.get("isAdmin"))


@bp.route("/<string:match_id>", methods=["GET"])
@login_required
def view_match(match_id: str) -> Any:
    """Return the match, escalating an overdue pending score first."""
    db = firestore.client()
    return jsonify(MatchService.get_match(db, match_id))


@bp.route("/<string:match_id>/score", methods=["POST"])
@login_required
def submit_score(match_id: str) -> Any:
    """Propose game-by-game scores for a match."""
    form = _bind(ScoreForm)
    if not form.validate():
        return _invalid(form)

    db = firestore.client()
    user_id, is_admin = _caller()
    is_organizer = MatchService.is_match_organizer(db, match_id, user_id, is_admin)
    scores_a, scores_b = form.games()
    result = MatchService.submit_score(
        db, match_id, scores_a, scores_b, user_id, is_organizer=is_organizer
    )
    return jsonify(result), 201


@bp.route("/<string:match_id>/confirm", methods=["POST"])
@login_required
def confirm_score(match_id: str) -> Any:
    """Acknowledge the score the other side submitted."""
    form = _bind(ConfirmForm)
    if not form.validate():
        return _invalid(form)

    db = firestore.client()
    user_id, is_admin = _caller()
    is_organizer = MatchService.is_match_organizer(db, match_id, user_id, is_admin)
    result = MatchService.confirm_score(
        db,
        match_id,
        user_id,
        is_organizer=is_organizer,
        submission_id=form.submission_id.data or None,
    )
    return jsonify(result)


@bp.route("/<string:match_id>/dispute", methods=["POST"])
@login_required
def dispute_score(match_id: str) -> Any:
    """Reject the submitted score and send it to the organizer."""
    form = _bind(DisputeForm)
    if not form.validate():
        return _invalid(form)

    db = firestore.client()
    user_id, is_admin = _caller()
    is_organizer = MatchService.is_match_organizer(db, match_id, user_id, is_admin)
    result = MatchService.dispute_score(
        db,
        match_id,
        user_id,
        form.reason.data,
        notes=form.notes.data or "",
        is_organizer=is_organizer,
    )
    return jsonify(result)


@bp.route("/<string:match_id>/resolve", methods=["POST"])
@login_required
def resolve_dispute(match_id: str) -> Any:
    """Organizer decision: finalize, edit or void the result."""
    form = _bind(ResolveDisputeForm)
    if not form.validate():
        return _invalid(form)

    db = firestore.client()
    user_id, is_admin = _caller()
    result = DisputeService.resolve_dispute(
        db,
        match_id,
        user_id,
        form.action.data,
        new_scores=form.new_scores(),
        is_admin=is_admin,
    )
    if result.get("warnings"):
        current_app.logger.warning(
            f"Match {match_id} resolved with warnings: {result['warnings']}"
        )
    return jsonify(result)
