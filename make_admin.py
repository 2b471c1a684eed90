# make_admin.py
# Usage: python make_admin.py <mobile>
#
# Promotes an existing account to admin and makes sure the global settings
# row exists, so upgrades can be approved right away.
import sys

from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from bonus.settings_store import SettingsStore
from extensions import db
from models import User
from utils import normalize_mobile


def make_admin(mobile):
    app = create_app()
    with app.app_context():
        mobile = normalize_mobile(mobile)
        user = User.query.filter_by(mobile=mobile).first()
        if not user:
            raise SystemExit(f"No user with mobile {mobile}; sign up first.")

        try:
            user.is_admin = True
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        settings = SettingsStore.ensure_settings()
        print(f"User (id={user.id}, mobile={mobile}) is now admin.")
        print(f"Active cycle: {settings['current_cycle_id']}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        raise SystemExit("Usage: python make_admin.py <mobile>")
    make_admin(sys.argv[1])
