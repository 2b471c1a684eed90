from flask import Blueprint, jsonify, request, session, g, current_app
from flask_login import current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from bonus.referral_graph import ReferralGraphHelper
from errors import Forbidden, InvalidCredentials, StoreFailure, ValidationError
from extensions import db
from models import User
from session_guard import DEVICE_ID_KEY, SessionGuard
from utils import (
    generate_recovery_key,
    get_json_body,
    normalize_mobile,
    validate_pin,
    validate_recovery_key,
)


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="")

DEVICE_HEADER = "X-Device-Id"
MIN_NAME_LENGTH = 3


def request_device_id(data=None):
    """Device id sent by the client: header first, then the JSON body."""
    device_id = request.headers.get(DEVICE_HEADER)
    if not device_id and isinstance(data, dict):
        device_id = data.get("deviceId")
    return (device_id or "").strip() or None


def get_session_guard() -> SessionGuard:
    """One guard per request, over the Flask cookie session."""
    if "session_guard" not in g:
        device_id = request_device_id() or session.get(DEVICE_ID_KEY) or "unidentified-device"
        hours = current_app.config.get("SESSION_TIMEOUT_HOURS", 24)
        g.session_guard = SessionGuard(session, device_id=device_id, timeout=hours * 3600)
    return g.session_guard


def require_self_or_admin(user_id: int):
    if current_user.id != user_id and not current_user.is_admin:
        raise Forbidden()


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/api/signup", methods=["POST"])
def signup():
    """
    Create a free account.

    Expected JSON: {"fullName", "mobile", "pin", "referralCode"?}
    The recovery key is returned once and only its hash is stored.
    """
    data = get_json_body(request)

    full_name = (data.get("fullName") or "").strip()
    if len(full_name) < MIN_NAME_LENGTH:
        raise ValidationError("Name must be at least 3 characters")

    mobile = normalize_mobile(data.get("mobile"))
    pin = validate_pin(data.get("pin"))

    referral_code = (data.get("referralCode") or "").strip()
    if referral_code:
        referral_code = normalize_mobile(referral_code)

    if User.query.filter_by(mobile=mobile).first():
        raise ValidationError("Mobile number already registered")

    referrer = ReferralGraphHelper.validate_referral_code(mobile, referral_code or None)

    recovery_key = generate_recovery_key()
    try:
        new_user = User(
            full_name=full_name,
            mobile=mobile,
            referred_by=referrer.mobile if referrer else None,
            is_admin=mobile == current_app.config.get("ADMIN_MOBILE"),
        )
        new_user.set_pin(pin)
        new_user.set_recovery_key(recovery_key)

        db.session.add(new_user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Mobile number already registered")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[SIGNUP] failed for {mobile}: {e}")
        raise StoreFailure(str(e)) from e

    current_app.logger.info(
        f"New user {new_user.id} registered"
        + (f" under referrer {referrer.id}" if referrer else "")
    )
    return jsonify({
        "status": "success",
        "message": "Signup successful",
        "user": new_user.to_dict(),
        "recoveryKey": recovery_key,
    }), 201


 # --------------------------------------------------
 #      Login Route
 # --------------------------------------------------
@bp.route("/api/login", methods=["POST"])
def login():
    """
    Expected JSON: {"mobile", "pin", "deviceId"} (or the X-Device-Id header).
    The first successful login binds the device; any other device is refused.
    """
    data = get_json_body(request)
    device_id = request_device_id(data)
    if not device_id:
        raise ValidationError("Device id is required")

    g.session_guard = SessionGuard(
        session,
        device_id=device_id,
        timeout=current_app.config.get("SESSION_TIMEOUT_HOURS", 24) * 3600,
    )
    result = g.session_guard.login(data.get("mobile"), data.get("pin"))

    if not result["success"]:
        status = {"ValidationError": 400, "DeviceConflict": 409}.get(result["error"], 401)
        return jsonify({"error": result["message"], "code": result["error"]}), status

    return jsonify({
        "message": "Login successful",
        "user": result["user"].to_dict(),
    }), 200

#-----------------------------------------------------------------------------------------------------
@bp.route("/api/logout", methods=["POST"])
def logout():
    """
    Destroy User session
    """
    get_session_guard().logout()
    return jsonify({"message": "Logged out successfully"}), 200

# --------------------------------------------------
# Check Session (for frontend auto-login)
# --------------------------------------------------
@bp.route("/api/session", methods=["GET"])
def check_session():
    """Returns current logged-in user data if authenticated"""
    user = get_session_guard().current_user()
    if not user:
        return jsonify({"authenticated": False}), 200

    return jsonify({
        "authenticated": True,
        "user": user.to_dict()
    }), 200

# --------------------------------------------------
# PIN reset with the recovery key
# --------------------------------------------------
@bp.route("/api/reset-pin", methods=["POST"])
def reset_pin():
    """
    Expected JSON: {"mobile", "recoveryKey", "newPin"}.
    Device binding is left untouched.
    """
    data = get_json_body(request)
    mobile = normalize_mobile(data.get("mobile"))
    recovery_key = validate_recovery_key(data.get("recoveryKey"))
    new_pin = validate_pin(data.get("newPin"), field="New PIN")

    user = User.query.filter_by(mobile=mobile).first()
    if not user or not user.check_recovery_key(recovery_key):
        logger.warning(f"PIN reset rejected for {mobile}")
        raise InvalidCredentials("Invalid mobile or recovery key")

    try:
        user.set_pin(new_pin)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"PIN reset failed for user {user.id}: {e}")
        raise StoreFailure(str(e)) from e

    logger.info(f"PIN reset for user {user.id}")
    return jsonify({
        "success": True,
        "message": "PIN updated. Login with your new 4-digit PIN.",
    }), 200
