#======================================================================================
#
# ADMIN API
#
#=======================================================================================
from functools import wraps
import logging

from flask import jsonify, request, Blueprint, current_app
from flask_login import current_user, login_required

from bonus.reporting import PnLReportHelper
from bonus.reward_engine import RewardEngine
from bonus.settings_store import SettingsStore
from errors import Forbidden, ValidationError
from utils import get_json_body

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    Runs after login_required; the is_admin flag comes from the freshly loaded
    user row, never from the client.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            logger.warning(f"Admin route {request.path} refused")
            raise Forbidden("Admin access required")
        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin_bp.route("/stats", methods=["GET"])
@login_required
@admin_required
def admin_stats():
    return jsonify(PnLReportHelper.compute_pnl()), 200


@admin_bp.route("/bonus", methods=["POST"])
@login_required
@admin_required
def admin_bonus():
    data = get_json_body(request)
    user_id = data.get("userId")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("userId must be an integer")

    reward = RewardEngine.grant_bonus(user_id, data.get("amount"))
    current_app.logger.info(f"Admin {current_user.id} granted bonus {reward['amount']} to user {user_id}")
    return jsonify(reward), 201


@admin_bp.route("/settings", methods=["GET"])
@login_required
@admin_required
def get_settings():
    return jsonify(SettingsStore.read_settings()), 200


@admin_bp.route("/settings", methods=["PUT"])
@login_required
@admin_required
def put_settings():
    """Full replacement: send every field, unchanged ones included."""
    settings = SettingsStore.write_settings(get_json_body(request))
    current_app.logger.info(f"Admin {current_user.id} replaced global settings")
    return jsonify(settings), 200
