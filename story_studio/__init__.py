from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask, jsonify
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from .config import Config
from .extensions import csrf, db, migrate
from .db_utils import ensure_database_schema


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    configure_logging(app)
    register_extensions(app)
    register_blueprints(app)
    register_error_handlers(app)

    if app.config.get("DATABASE_URL"):
        with app.app_context():
            try:
                ensure_database_schema()
            except SQLAlchemyError:
                app.logger.exception("Story store unavailable during schema check; continuing without it.")
    else:
        app.logger.warning("DATABASE_URL not configured; generated stories will not be saved.")

    return app


def configure_logging(app: Flask) -> None:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)
    logging.getLogger("api_handler").setLevel(level)


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .stories import bp as stories_bp

    csrf.exempt(stories_bp)
    app.register_blueprint(stories_bp)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"success": False, "error": "Resource not found.", "code": "NOT_FOUND"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return (
            jsonify({"success": False, "error": "Method not allowed.", "code": "METHOD_NOT_ALLOWED"}),
            405,
        )
