import os

from apscheduler.schedulers.background import BackgroundScheduler

from shelfmark.services.notifications import prune_change_events


scheduler = BackgroundScheduler()


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["CHANGE_EVENT_PRUNE_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            prune_change_events,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="change_event_prune",
            replace_existing=True,
        )
        scheduler.start()
