"""
CASINOCORE — HTTP entry point

    python -m api.app                 # serves on CASINOCORE_API_HOST:CASINOCORE_API_PORT
    flask --app api.app:create_app run
"""

import logging
from typing import Optional

from flask import Flask, jsonify

from api.round_routes import TableService, init_app
from config.settings import Settings, configure_logging

logger = logging.getLogger("casinocore.api")


def create_app(service: Optional[TableService] = None) -> Flask:
    configure_logging()
    app = Flask(__name__)
    init_app(app, service)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    logger.info("Registered round blueprint")
    return app


if __name__ == "__main__":
    create_app().run(host=Settings.API_HOST, port=Settings.API_PORT)
