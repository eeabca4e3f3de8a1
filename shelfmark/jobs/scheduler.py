import os

from apscheduler.schedulers.background import BackgroundScheduler

from shelfmark.models import Bookmark
from shelfmark.services.bookmarks import enrich_bookmark


def run_enrichment_sweep(app) -> int:
    with app.app_context():
        bookmarks = (
            Bookmark.query.filter(
                Bookmark.enriched_at.is_(None), Bookmark.is_archived.is_(False)
            )
            .order_by(Bookmark.created_at.asc(), Bookmark.id.asc())
            .limit(app.config["ENRICH_BATCH_SIZE"])
            .all()
        )

        categorizer = app.extensions["categorizer"]
        enriched = sum(1 for bookmark in bookmarks if enrich_bookmark(bookmark, categorizer))
        if bookmarks:
            app.logger.info(
                "Enrichment sweep: %s of %s bookmarks enriched", enriched, len(bookmarks)
            )
        return enriched


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return None
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return None
    if "scheduler" in app.extensions:
        return app.extensions["scheduler"]

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_enrichment_sweep,
        "interval",
        minutes=app.config["ENRICH_INTERVAL_MINUTES"],
        kwargs={"app": app},
        id="enrichment_sweep",
        replace_existing=True,
    )
    scheduler.start()
    app.extensions["scheduler"] = scheduler
    return scheduler
