from collections.abc import Mapping

from flask import Flask

from .config import Config
from .errors import register_error_handlers
from .extensions import cors, db
from .routes import register_routes


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config)
    app.config.from_envvar("APP_SETTINGS", silent=True)
    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    # Mobile and web clients call the API from other origins
    cors.init_app(
        app,
        origins=app.config["CORS_ORIGINS"].split(","),
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    register_error_handlers(app)
    register_routes(app)

    return app
