from flask import Flask

from shelfmark.api import api_bp
from shelfmark.auth import auth_bp
from shelfmark.config import Config
from shelfmark.extensions import db, login_manager, migrate
from shelfmark.jobs.scheduler import start_scheduler
from shelfmark.schema_migrations import backfill_media_types
from shelfmark.services.categorizer import Categorizer


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    app.extensions["categorizer"] = Categorizer.from_config(app.config)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        backfill_media_types()
        print("Initialized Shelfmark database.")

    with app.app_context():
        db.create_all()
        backfilled = backfill_media_types()
        if backfilled:
            app.logger.info("Backfilled media type on %s bookmarks", backfilled)

    start_scheduler(app)
    return app
