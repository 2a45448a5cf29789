import logging

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Config
from db.schemas import RecordValidationError
from db.stores import BaseStore, DuplicateKeyError, build_store
from logging_config import setup_logging

logger = logging.getLogger(__name__)

STORE_EXTENSION = "telemed_store"


def get_store(app: Flask) -> BaseStore:
    return app.extensions[STORE_EXTENSION]


def create_app(config_object=Config, store: BaseStore = None, **overrides):
    """Application factory function"""
    app = Flask(__name__)

    app.config.from_object(config_object)
    app.config.update(overrides)

    # Storage backend: in-memory map or document store
    if store is None:
        store = build_store(app.config["STORAGE_BACKEND"], app.config["DATABASE_URI"])
    app.extensions[STORE_EXTENSION] = store

    # Enable CORS
    CORS(app)

    # Register blueprints
    from .routes import main
    app.register_blueprint(main, url_prefix=app.config["API_PREFIX"] or None)

    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask):

    def failure(error: str, status: int):
        return jsonify({"success": False, "error": error}), status

    @app.errorhandler(404)
    @app.errorhandler(405)
    def endpoint_not_found(e):
        return failure("Endpoint not found", 404)

    @app.errorhandler(413)
    def payload_too_large(e):
        return failure("Payload too large", 413)

    @app.errorhandler(RecordValidationError)
    def invalid_record(e):
        return failure(str(e), 400)

    @app.errorhandler(DuplicateKeyError)
    def duplicate_record(e):
        return failure(str(e), 409)

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return failure(e.description or e.name, e.code or 500)
        logger.error("Unhandled error: %s", e, exc_info=True)
        return failure(str(e) or "Internal server error", 500)


def main():
    setup_logging(Config.LOG_LEVEL, log_to_file=Config.LOG_TO_FILE)
    app = create_app()
    logger.info(f"TeleMed API server running on port {Config.PORT}")
    logger.info(f"Health check: http://localhost:{Config.PORT}{Config.API_PREFIX}/health")
    app.run(host=Config.HOST, port=Config.PORT)
