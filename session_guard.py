"""
One account, one device.

The guard keeps its state in a plain key-value store: Flask's cookie
``session`` for HTTP requests, or a ``FileSessionStore`` for a local client.
Device conflicts and expired sessions end in the logged-out state; they are
logged, never raised to the caller.
"""
import json
import os
import time
import uuid
from collections.abc import MutableMapping
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import DeviceConflict, InvalidCredentials, StoreFailure, ValidationError
from extensions import db
from logger import auth_logger as logger
from models import User
from utils import normalize_mobile, validate_pin

SESSION_TIMEOUT_SECONDS = 24 * 60 * 60

USER_ID_KEY = "session_user_id"
DEVICE_ID_KEY = "session_device_id"
TIMESTAMP_KEY = "session_timestamp"
SESSION_KEYS = (USER_ID_KEY, DEVICE_ID_KEY, TIMESTAMP_KEY)

_DEVICE_NAMESPACE = uuid.UUID("6f1c2a4e-9b1d-4c55-8a2e-3d0b7e5f9a10")


def derive_device_id() -> str:
    """
    Stable per-install identifier.

    WALLET_DEVICE_ID wins when set. Otherwise the hardware node id is hashed
    into a UUIDv5; uuid.getnode() falls back to a random 48-bit number with the
    multicast bit set when no MAC is available, and in that case a random id
    is returned instead.
    """
    configured = os.environ.get("WALLET_DEVICE_ID")
    if configured:
        return configured

    node = uuid.getnode()
    if not (node >> 40) & 0x01:
        return str(uuid.uuid5(_DEVICE_NAMESPACE, f"{node:012x}"))

    return uuid.uuid4().hex


class FileSessionStore(MutableMapping):
    """Key-value pairs persisted as a flat JSON object."""

    def __init__(self, path):
        self.path = path

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return data if isinstance(data, dict) else {}

    def _save(self, data):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)

    def __getitem__(self, key):
        return self._load()[key]

    def __setitem__(self, key, value):
        data = self._load()
        data[key] = value
        self._save(data)

    def __delitem__(self, key):
        data = self._load()
        del data[key]
        self._save(data)

    def __iter__(self):
        return iter(self._load())

    def __len__(self):
        return len(self._load())

    def clear(self):
        if os.path.exists(self.path):
            os.remove(self.path)


class SessionGuard:

    def __init__(self, store: MutableMapping, device_id: Optional[str] = None,
                 clock=time.time, timeout: int = SESSION_TIMEOUT_SECONDS):
        self.store = store
        self.device_id = device_id or derive_device_id()
        self.clock = clock
        self.timeout = timeout
        self._resolved = False
        self._user = None
        self.expired = False

    # ------------------------------------------------------------------
    # login / logout
    # ------------------------------------------------------------------
    def login(self, mobile, pin) -> dict:
        """
        Authenticate (mobile, pin) on this device.

        Returns {"success": True, "user": User} or
        {"success": False, "error": <code>, "message": <text>}.
        StoreFailure propagates.
        """
        try:
            user = self._authenticate(mobile, pin)
        except (ValidationError, InvalidCredentials, DeviceConflict) as exc:
            return {"success": False, "error": exc.code, "message": exc.message}

        self._write_marker(user.id)
        self._user = user
        self._resolved = True
        logger.info(f"Login succeeded for user {user.id}")
        return {"success": True, "user": user}

    def _authenticate(self, mobile, pin) -> User:
        mobile = normalize_mobile(mobile)
        validate_pin(pin)

        try:
            user = User.query.filter_by(mobile=mobile).first()
            if not user or not user.check_pin(pin):
                raise InvalidCredentials()

            if user.device_fingerprint and user.device_fingerprint != self.device_id:
                logger.warning(
                    f"Device conflict on login for user {user.id}: "
                    f"bound={user.device_fingerprint} presented={self.device_id}"
                )
                raise DeviceConflict()

            if not user.device_fingerprint:
                # bind only if still unbound; a concurrent first login must not overwrite
                bound = User.query.filter(
                    User.id == user.id,
                    User.device_fingerprint.is_(None),
                ).update({User.device_fingerprint: self.device_id}, synchronize_session=False)
                db.session.commit()
                db.session.refresh(user)
                if not bound and user.device_fingerprint != self.device_id:
                    raise DeviceConflict()
                logger.info(f"Bound device {self.device_id} to user {user.id}")

            return user
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Store failure during login: {e}")
            raise StoreFailure(str(e)) from e

    def logout(self):
        try:
            self.store.clear()
        except Exception as e:
            logger.error(f"Failed to clear session store on logout: {e}")
        self._user = None
        self._resolved = True

    # ------------------------------------------------------------------
    # resume
    # ------------------------------------------------------------------
    def resume_session(self) -> Optional[User]:
        user_id = self.store.get(USER_ID_KEY)
        if user_id is None:
            return None

        try:
            age = self.clock() - float(self.store.get(TIMESTAMP_KEY))
        except (TypeError, ValueError):
            # missing or unreadable timestamp counts as expired
            age = None

        if age is None or age > self.timeout:
            logger.info(f"Session for user {user_id} expired")
            self.expired = True
            self._clear()
            return None

        try:
            user = db.session.get(User, int(user_id))
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Store failure while resuming session: {e}")
            raise StoreFailure(str(e)) from e

        if user is None:
            logger.info(f"Session user {user_id} no longer exists")
            self._clear()
            return None

        if user.device_fingerprint and user.device_fingerprint != self.device_id:
            logger.warning(
                f"Forced logout for user {user.id}: session device {self.device_id} "
                f"does not match bound device"
            )
            self._clear()
            return None

        self.store[TIMESTAMP_KEY] = self.clock()
        return user

    def current_user(self) -> Optional[User]:
        if not self._resolved:
            self._user = self.resume_session()
            self._resolved = True
        return self._user

    def invalidate(self):
        self.logout()

    # ------------------------------------------------------------------
    def _write_marker(self, user_id):
        self.store[USER_ID_KEY] = user_id
        self.store[DEVICE_ID_KEY] = self.device_id
        self.store[TIMESTAMP_KEY] = self.clock()

    def _clear(self):
        for key in SESSION_KEYS:
            self.store.pop(key, None)
