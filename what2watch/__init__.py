import logging
import sqlite3

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import load_settings, setup_logging
from .db import close_db, get_db
from .models import RowDecodeError, init_db
from .tmdb import TMDbError

logger = logging.getLogger("what2watch.api")


def create_app(config_overrides: dict | None = None) -> Flask:
    """Build the What2Watch API application."""
    settings = load_settings(config_overrides)
    setup_logging(settings)

    app = Flask(__name__)
    app.config.update(settings)
    app.teardown_appcontext(close_db)

    from .routes import collections, public

    app.register_blueprint(public.bp)
    app.register_blueprint(collections.bp)

    _register_error_handlers(app)

    with app.app_context():
        init_db(get_db())
    logger.info(f"Database ready at {app.config['DATABASE_PATH']}")

    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"ok": False, "error": exc.description}), exc.code

    @app.errorhandler(TMDbError)
    def _tmdb_error(exc: TMDbError):
        if exc.status_code == 404:
            return jsonify({"ok": False, "error": "Not found"}), 404
        logger.error(f"TMDb failure: {exc}")
        return jsonify({"ok": False, "error": "Catalog service unavailable"}), 502

    @app.errorhandler(RowDecodeError)
    def _decode_error(exc: RowDecodeError):
        logger.exception("Stored row failed validation")
        return jsonify({"ok": False, "error": "server-error: invalid stored data"}), 500

    @app.errorhandler(sqlite3.Error)
    def _db_error(exc: sqlite3.Error):
        get_db().rollback()
        logger.exception("Database error")
        return jsonify({"ok": False, "error": f"server-error: {exc}"}), 500
