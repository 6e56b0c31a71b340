from collections.abc import Mapping

from flask import Flask
from flask_cors import CORS

from .clock import SystemClock
from .config import Config
from .extensions import CLOCK_KEY, NOTIFIER_KEY, db
from .notifications import log_notifier
from .routes import register_routes


def create_app(config_object=None, *, clock=None, notifier=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config)
    app.config.from_envvar("APP_SETTINGS", silent=True)
    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    # Collaborators the scheduling core asks for instead of reaching for globals
    app.extensions[CLOCK_KEY] = clock or SystemClock()
    app.extensions[NOTIFIER_KEY] = notifier or log_notifier

    # Allow the storefront and staff dashboard to talk to the backend
    CORS(app,
         origins=app.config["CORS_ORIGINS"],
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    register_routes(app)

    return app
