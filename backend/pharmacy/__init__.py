# backend/pharmacy/__init__.py
import logging

from flask import Flask

from .config import Config, load_database_targets
from .extensions import db, migrate


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("pharmacy").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Primary pool limits come from the same target config as the secondaries
    primary = load_database_targets(app.config)["primary"]
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", primary.engine_options())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic and the synchronizer see the full metadata
    from . import models  # noqa: F401

    # One key per process, built once and passed by reference
    from .encryption import EncryptionKey, FieldCipher
    app.extensions["field_cipher"] = FieldCipher(EncryptionKey.from_secret(app.config["ENCRYPTION_KEY"]))

    from .db_router import ConnectionRouter
    from .services.background import BackgroundTasks
    from .services.replication_service import ReplicationSynchronizer

    router = ConnectionRouter(app)
    if app.config.get("DB_AUTO_CREATE_SCHEMA"):
        router.prepare_schemas()

    BackgroundTasks(app)
    sync = ReplicationSynchronizer(app, router)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp
    from .routes.qr import qr_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(qr_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if sync.enabled and app.config.get("SYNC_AUTOSTART") and not app.config.get("TESTING"):
        sync.start()

    return app
