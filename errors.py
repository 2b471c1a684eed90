# ==========================================================
#                  EXCEPTIONS
# ==========================================================
class WalletError(Exception):
    """Base error; rendered as {"error": message, "code": code}."""
    code = "WalletError"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(WalletError):
    code = "ValidationError"
    status_code = 400
    default_message = "Invalid input"


class InvalidCredentials(WalletError):
    code = "InvalidCredentials"
    status_code = 401
    default_message = "Invalid mobile number or PIN"


class SessionExpired(WalletError):
    code = "SessionExpired"
    status_code = 401
    default_message = "Session expired, please log in again"


class Forbidden(WalletError):
    code = "Forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class NotFound(WalletError):
    code = "NotFound"
    status_code = 404
    default_message = "Not found"


class DeviceConflict(WalletError):
    code = "DeviceConflict"
    status_code = 409
    default_message = "This account is linked to another device"


class StoreFailure(WalletError):
    code = "StoreFailure"
    status_code = 500
    default_message = "Data store unavailable"
