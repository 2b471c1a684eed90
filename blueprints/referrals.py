from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required

from blueprints.admin import admin_required
from blueprints.auth import require_self_or_admin
from bonus.referral_graph import ReferralGraphHelper
from bonus.reward_engine import RewardEngine
from bonus.settings_store import SettingsStore
from errors import ValidationError
from utils import get_json_body


bp = Blueprint("referrals", __name__, url_prefix="")


@bp.route("/api/referrals/<int:user_id>", methods=["GET"])
@login_required
def get_referrals(user_id):
    """
    Growth view for one user: code, direct team, earnings per tier and the
    Tier-2 valve for the current cycle.
    """
    require_self_or_admin(user_id)

    user = ReferralGraphHelper.get_user(user_id)
    cycle_id = SettingsStore.read_settings()["current_cycle_id"]

    return jsonify({
        "referralCode": user.referral_code,
        "directReferrals": ReferralGraphHelper.list_direct_team(user_id),
        "rewards": RewardEngine.reward_totals(user_id),
        "valve": ReferralGraphHelper.valve_status(user_id, cycle_id),
    }), 200


@bp.route("/api/upgrade", methods=["POST"])
@login_required
@admin_required
def upgrade():
    """
    Approve a premium upgrade after the payment receipt was reviewed.
    Safe to retry: a second call for the same user changes nothing.
    """
    data = get_json_body(request)
    user_id = data.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("userId must be an integer")

    result = RewardEngine.upgrade(user_id)
    if result["applied"]:
        current_app.logger.info(f"User {user_id} upgraded to premium in {result['cycle_id']}")

    return jsonify({"success": True, **result}), 200
