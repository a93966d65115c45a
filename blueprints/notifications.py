"""Rank notification routes."""

from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, abort, jsonify, request

from notifications import NotificationStoreDB
from rank_service import PROFILE_KEY_RE

bp = Blueprint("notifications", __name__)


def _store(profile_key: str) -> NotificationStoreDB:
    if not PROFILE_KEY_RE.match(profile_key):
        abort(400, description="Invalid profile key")
    return NotificationStoreDB(profile_key)


@bp.route("/api/profiles/<profile_key>/notifications")
def api_notifications(profile_key):
    store = _store(profile_key)
    limit = min(max(request.args.get("limit", 20, type=int), 1), 100)
    return jsonify({
        "notifications": [asdict(n) for n in store.recent(limit)],
        "unread_count": store.unread_count(),
    })


@bp.route("/api/profiles/<profile_key>/notifications/read", methods=["POST"])
def api_notifications_read(profile_key):
    data = request.get_json(silent=True) or {}
    notif_id = data.get("id", "")
    store = _store(profile_key)
    if notif_id == "all":
        store.mark_all_read()
    else:
        store.mark_read(notif_id)
    return jsonify({"success": True})


@bp.route("/api/profiles/<profile_key>/notifications/dismiss", methods=["POST"])
def api_notifications_dismiss(profile_key):
    data = request.get_json(silent=True) or {}
    store = _store(profile_key)
    store.dismiss(data.get("id", ""))
    return jsonify({"success": True})
