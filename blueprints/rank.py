"""Rank, XP and decay routes."""

from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from challenges import CHALLENGES, CHALLENGE_TYPES
from extensions import limiter
from notifications import message_for
from rank import RANK_CONFIG, MAX_LEVEL
from rank_service import PROFILE_KEY_RE, XP_AWARDS, RankService, snapshot

bp = Blueprint("rank", __name__)


def _service(profile_key: str) -> RankService:
    if not PROFILE_KEY_RE.match(profile_key):
        abort(400, description="Invalid profile key")
    return RankService(profile_key, clock=current_app.config.get("RANK_CLOCK"))


def _xp_limit() -> str:
    return current_app.config.get("XP_RATE_LIMIT", "60 per minute")


@bp.route("/api/rank/tiers")
def api_rank_tiers():
    return jsonify({
        "max_level": MAX_LEVEL,
        "tiers": [
            {
                "tier": tier.value,
                "xp_per_level": cfg.xp_per_level,
                "next_tier": cfg.next_tier.value if cfg.next_tier else None,
                "max_level": tier.max_level,
                "color": cfg.color,
                "icon": cfg.icon,
            }
            for tier, cfg in RANK_CONFIG.items()
        ],
        "xp_awards": XP_AWARDS,
        "challenges": [
            {"id": c.id, "title": c.title, "type": c.type, "goal": c.goal, "xp_reward": c.xp_reward}
            for c in CHALLENGES
        ],
    })


@bp.route("/api/profiles/<profile_key>/rank")
def api_rank(profile_key):
    """Current rank. Runs the decay check first, as a page load would."""
    service = _service(profile_key)
    result = service.check_decay()
    now = service.clock.now()
    return jsonify({
        "rank": snapshot(result.rank, result.activity, now),
        "demotion": message_for(result.demotion),
        "warning": message_for(result.warning),
    })


@bp.route("/api/profiles/<profile_key>/activity", methods=["POST"])
def api_record_activity(profile_key):
    """Record a qualifying activity. A known ``activity`` name also awards its XP."""
    service = _service(profile_key)
    data = request.get_json(silent=True) or {}
    activity_name = data.get("activity")

    if activity_name is None:
        service.record_activity()
        return jsonify({"success": True, "rank": service.status(), "events": []})

    if not isinstance(activity_name, str) or activity_name not in XP_AWARDS:
        return jsonify({"error": f"Unknown activity: {activity_name}"}), 400
    if "amount" in data:
        # Catalogued activities pay fixed XP; arbitrary amounts go through /xp.
        return jsonify({"error": "amount is not accepted for catalogued activities"}), 400

    result = service.award(activity_name)
    return jsonify({
        "success": True,
        "rank": service.status(),
        "events": [_event_json(e) for e in result.events],
    })


@bp.route("/api/profiles/<profile_key>/challenges")
def api_challenges(profile_key):
    return jsonify({"challenges": _service(profile_key).challenge_status()})


@bp.route("/api/profiles/<profile_key>/challenges/progress", methods=["POST"])
def api_challenge_progress(profile_key):
    """Advance every open challenge of ``type`` by ``increment`` (default 1)."""
    service = _service(profile_key)
    data = request.get_json(silent=True) or {}
    challenge_type = data.get("type")
    increment = data.get("increment", 1)
    if not isinstance(challenge_type, str) or challenge_type not in CHALLENGE_TYPES:
        return jsonify({"error": f"Unknown challenge type: {challenge_type}"}), 400
    if not _valid_amount(increment) or increment == 0:
        return jsonify({"error": "increment must be a positive integer"}), 400

    result, completed = service.advance_challenge(challenge_type, increment)
    return jsonify({
        "success": True,
        "completed": [entry.challenge.id for entry in completed],
        "challenges": service.challenge_status(),
        "rank": service.status(),
        "events": [_event_json(e) for e in result.events],
    })


@bp.route("/api/profiles/<profile_key>/xp", methods=["POST"])
@limiter.limit(_xp_limit, methods=["POST"])
def api_gain_xp(profile_key):
    service = _service(profile_key)
    data = request.get_json(silent=True) or {}
    amount = data.get("amount")
    if not _valid_amount(amount):
        return jsonify({"error": "amount must be a non-negative integer"}), 400

    result = service.gain_xp(amount)
    return jsonify({
        "success": True,
        "rank": service.status(),
        "events": [_event_json(e) for e in result.events],
    })


@bp.route("/api/profiles/<profile_key>/rank", methods=["DELETE"])
def api_reset_rank(profile_key):
    _service(profile_key).reset()
    return jsonify({"success": True})


def _valid_amount(amount) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0


def _event_json(event) -> dict:
    return {**event.to_dict(), "message": message_for(event)}
