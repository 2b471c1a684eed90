import re
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context

from errors import ValidationError

MOBILE_DIGITS = 10
PIN_LENGTH = 4
RECOVERY_KEY_LENGTH = 6
CENT = Decimal("0.01")


def _country_code():
    if has_app_context():
        return current_app.config.get("DEFAULT_COUNTRY_CODE", "+91")
    return "+91"


def normalize_mobile(raw):
    """
    Accepts "9876543210" or "+919876543210" and returns the stored form
    ("+919876543210"). Raises ValidationError for anything else.
    """
    if not isinstance(raw, str):
        raise ValidationError("Enter a valid 10-digit mobile number")

    code = _country_code()
    mobile = re.sub(r"[\s-]", "", raw)
    if mobile.startswith(code):
        mobile = mobile[len(code):]

    if not re.fullmatch(rf"\d{{{MOBILE_DIGITS}}}", mobile):
        raise ValidationError("Enter a valid 10-digit mobile number")
    return f"{code}{mobile}"


def validate_pin(pin, field="PIN"):
    if not isinstance(pin, str) or not re.fullmatch(rf"\d{{{PIN_LENGTH}}}", pin):
        raise ValidationError(f"{field} must be exactly {PIN_LENGTH} digits")
    return pin


def validate_recovery_key(key):
    if not isinstance(key, str) or not re.fullmatch(rf"\d{{{RECOVERY_KEY_LENGTH}}}", key):
        raise ValidationError(f"Recovery key must be {RECOVERY_KEY_LENGTH} digits")
    return key


def generate_recovery_key():
    """Six digits, first one never zero."""
    return str(100000 + secrets.randbelow(900000))


def parse_amount(value, field="amount", allow_zero=False):
    """
    Parse a currency amount into a Decimal with two places.
    Floats go through str() so 0.1 stays 0.1; more than two places is rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Please enter a valid {field}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Please enter a valid {field}")

    if not amount.is_finite():
        raise ValidationError(f"Please enter a valid {field}")
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than two decimal places")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be positive" if not allow_zero else f"{field} cannot be negative")
    return amount.quantize(CENT)


def get_json_body(request):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid or missing JSON body")
    return data


def period_start(filter_name, now=None):
    """
    Lower bound for the expense filters, in UTC.
    daily: midnight today; weekly: midnight of the last Sunday; monthly: the 1st.
    None / "all" means no bound.
    """
    if filter_name in (None, "", "all"):
        return None

    now = now or datetime.now(timezone.utc)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if filter_name == "daily":
        return today
    if filter_name == "weekly":
        # weekday(): Monday=0 ... Sunday=6
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if filter_name == "monthly":
        return today.replace(day=1)
    raise ValidationError("filter must be one of daily, weekly, monthly")
