# bonus/settings_store.py
from decimal import Decimal
from typing import Any, Dict
import logging

from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, StoreFailure, ValidationError
from extensions import db
from models import GlobalSettings
from utils import parse_amount


logger = logging.getLogger(__name__)

MAX_CYCLE_ID_LENGTH = 32


class SettingsStore:
    """
    Single-row global configuration.

    Writes replace the whole row: a field left out of the payload goes back to
    its default, so callers read-modify-write. Rewards already granted keep
    their own amount and cycle snapshot.
    """

    DEFAULTS = {
        "subscription_fee": Decimal("299.00"),
        "t1_reward": Decimal("50.00"),
        "t2_reward": Decimal("25.00"),
        "current_cycle_id": "WEEK_01",
        "notice_text": "",
        "campaign_active": False,
        "campaign_title": "",
    }

    @staticmethod
    def _row(lock: bool = False):
        if lock:
            return db.session.get(
                GlobalSettings, GlobalSettings.SINGLETON_ID, with_for_update={"read": True}
            )
        return db.session.get(GlobalSettings, GlobalSettings.SINGLETON_ID)

    @staticmethod
    def load(lock: bool = False) -> GlobalSettings:
        """Return the settings row; NotFound before the first admin save."""
        row = SettingsStore._row(lock=lock)
        if row is None:
            raise NotFound("Global settings have not been configured")
        return row

    @staticmethod
    def read_settings() -> Dict[str, Any]:
        try:
            return SettingsStore.load().to_dict()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read settings: {e}")
            raise StoreFailure(str(e)) from e

    @staticmethod
    def validate(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Full replacement row from payload; absent keys take their defaults."""
        if not isinstance(payload, dict):
            raise ValidationError("Settings must be an object")

        unknown = set(payload) - set(SettingsStore.DEFAULTS)
        if unknown:
            raise ValidationError(f"Unknown settings fields: {', '.join(sorted(unknown))}")

        row = dict(SettingsStore.DEFAULTS)
        row.update(payload)

        for field in ("subscription_fee", "t1_reward", "t2_reward"):
            row[field] = parse_amount(row[field], field=field, allow_zero=True)

        cycle_id = row["current_cycle_id"]
        if not isinstance(cycle_id, str) or not cycle_id.strip():
            raise ValidationError("current_cycle_id is required")
        cycle_id = cycle_id.strip()
        if len(cycle_id) > MAX_CYCLE_ID_LENGTH:
            raise ValidationError(f"current_cycle_id cannot exceed {MAX_CYCLE_ID_LENGTH} characters")
        row["current_cycle_id"] = cycle_id

        for field in ("notice_text", "campaign_title"):
            if row[field] is None:
                row[field] = ""
            if not isinstance(row[field], str):
                raise ValidationError(f"{field} must be text")

        if not isinstance(row["campaign_active"], bool):
            raise ValidationError("campaign_active must be true or false")

        return row

    @staticmethod
    def write_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
        row_data = SettingsStore.validate(payload)

        try:
            row = SettingsStore._row()
            if row is None:
                row = GlobalSettings(id=GlobalSettings.SINGLETON_ID)
                db.session.add(row)

            for field, value in row_data.items():
                setattr(row, field, value)

            db.session.commit()
            logger.info(
                f"Global settings replaced: fee={row.subscription_fee} t1={row.t1_reward} "
                f"t2={row.t2_reward} cycle={row.current_cycle_id}"
            )
            return row.to_dict()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to write settings: {e}")
            raise StoreFailure(str(e)) from e

    @staticmethod
    def ensure_settings() -> Dict[str, Any]:
        """Create the default row if none exists yet."""
        try:
            row = SettingsStore._row()
        except SQLAlchemyError as e:
            raise StoreFailure(str(e)) from e
        if row is not None:
            return row.to_dict()
        return SettingsStore.write_settings({})
