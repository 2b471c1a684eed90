import os
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from errors import SessionExpired, WalletError
from extensions import db, init_extensions, login_manager
from logger import LOG_FORMAT


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
        )

    setup_logging(app)

    # ----------------------------------------------------------------------------------------------------------------------------------
    # DATABASE URI Fix
    # --------------------------------------------------------------------------------------------------------------------------------------------
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        instance_dir = os.path.join(os.path.abspath(os.path.dirname(__file__)), "instance")
        os.makedirs(instance_dir, exist_ok=True)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    init_extensions(app)

    register_blueprints(app)
    register_error_handlers(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login: every request is authenticated by the session guard
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.request_loader
    def load_user_from_request(request):
        from blueprints.auth import get_session_guard
        return get_session_guard().current_user()

    @login_manager.unauthorized_handler
    def unauthorized():
        from blueprints.auth import get_session_guard
        if get_session_guard().expired:
            raise SessionExpired()
        return jsonify({"error": "Authentication required", "code": "Unauthorized"}), 401

    # ----------------------
    # Basic routes
    # ----------------------
    @app.route("/api/health")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}, 200

    return app


def setup_logging(app):
    """File handler for the app logger, console too when debugging."""
    log_dir = app.config.get("LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    file_handler = logging.FileHandler(os.path.join(log_dir, "app.log"), mode='a', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)


def register_blueprints(app):
    """Register all blueprints"""
    from blueprints.auth import bp as auth_bp
    from blueprints.profile import bp as profile_bp
    from blueprints.expenses import bp as expenses_bp
    from blueprints.referrals import bp as referrals_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(admin_bp)


def register_error_handlers(app):

    @app.errorhandler(WalletError)
    def handle_wallet_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled store error: {error}")
        return jsonify({"error": str(error), "code": "StoreFailure"}), 500

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"error": "Not found", "code": "NotFound"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"error": "Method not allowed", "code": "MethodNotAllowed"}), 405


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(debug=app.config.get("DEBUG", False), host="0.0.0.0", port=port)
