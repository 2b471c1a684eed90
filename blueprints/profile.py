from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError
import logging

from blueprints.auth import require_self_or_admin
from blueprints.withdraw_helpers import WithdrawalProcessor
from errors import NotFound, StoreFailure, ValidationError
from extensions import db
from models import User, GlobalSettings
from utils import get_json_body


logger = logging.getLogger(__name__)

bp = Blueprint('profile', __name__, url_prefix="")

# request key -> (column, max length); nothing else on User is writable here
PROFILE_FIELDS = {
    "fullName": ("full_name", 150),
    "gender": ("gender", 20),
    "bankName": ("bank_name", 120),
    "accountHolderName": ("account_holder_name", 150),
    "ifscCode": ("ifsc_code", 20),
}

# ----------------------------------------------------------------------------------
# USER DATA
# ----------------------------------------------------------------------------------
@bp.route("/api/users/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    require_self_or_admin(user_id)

    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return jsonify(user.to_dict()), 200


#===================================================================================

@bp.route('/api/user/profile', methods=['PUT'])
@login_required
def update_user_profile():
    """Update allow-listed profile fields and return fresh data"""
    data = get_json_body(request)

    unknown = set(data) - set(PROFILE_FIELDS) - {"age"}
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    changes = {}
    for key, (column, max_length) in PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{key} must be text")
        value = (value or "").strip()
        if len(value) > max_length:
            raise ValidationError(f"{key} is too long")
        changes[column] = value or None

    if "fullName" in data and not changes.get("full_name"):
        raise ValidationError("Name must be at least 3 characters")
    if changes.get("full_name") and len(changes["full_name"]) < 3:
        raise ValidationError("Name must be at least 3 characters")

    if "age" in data:
        age = data["age"]
        if age in (None, ""):
            changes["age"] = None
        elif isinstance(age, bool) or not isinstance(age, int) or not 0 < age < 130:
            raise ValidationError("age must be a whole number between 1 and 129")
        else:
            changes["age"] = age

    user = db.session.get(User, current_user.id)
    try:
        for column, value in changes.items():
            setattr(user, column, value)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Profile update failed for user {user.id}: {e}")
        raise StoreFailure(str(e)) from e

    return jsonify({
        "message": "Your profile has been updated successfully.",
        "user": user.to_dict(),
    }), 200

#=======================================================================================
#      WITHDRAWALS
#=======================================================================================

@bp.route("/api/withdrawals", methods=["POST"])
@login_required
def request_withdrawal():
    withdrawal = WithdrawalProcessor.request_withdrawal(current_user.id, get_json_body(request))
    return jsonify({
        "message": "Your withdrawal request has been submitted. It will be processed within 24-48 hours.",
        "withdrawal": withdrawal,
    }), 201

#=======================================================================================
#      PUBLIC NOTICE BANNER
#=======================================================================================

@bp.route("/api/settings/public", methods=["GET"])
def public_settings():
    row = db.session.get(GlobalSettings, GlobalSettings.SINGLETON_ID)
    if row is None:
        return jsonify({"notice_text": "", "campaign_active": False, "campaign_title": ""}), 200
    return jsonify({
        "notice_text": row.notice_text or "",
        "campaign_active": bool(row.campaign_active),
        "campaign_title": row.campaign_title or "",
    }), 200
