# backend/doccredits/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite") and ":memory:" not in uri:
        options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(options.get("connect_args") or {})
        # A lock wait must give up within the credit transaction bound
        bound = float(app.config["CREDIT_TRANSACTION_TIMEOUT_SECONDS"])
        busy = app.config.get("SQLITE_BUSY_TIMEOUT_SECONDS")
        busy = bound if busy is None else min(float(busy), bound)
        connect_args["timeout"] = min(float(connect_args.get("timeout", busy)), busy)
        options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.credits import credits_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(credits_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
