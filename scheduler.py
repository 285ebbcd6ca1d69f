import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from config import get_settings
from database import session_scope
from models import RecomputeTrigger
from store import build_store
from services import TagsSummaryService, ensure_core_tables


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

Runner = Callable[[str, RecomputeTrigger], object]


def _recompute_in_new_session(user_id: str, trigger: RecomputeTrigger) -> dict:
    with session_scope() as session:
        return TagsSummaryService(build_store(session)).recompute(user_id, trigger)


class SchedulerManager:
    def __init__(self, runner: Optional[Runner] = None) -> None:
        settings = get_settings()
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._runner = runner or _recompute_in_new_session

    def _run_recompute(self, user_id: str, trigger: str) -> None:
        logger.info(f"scheduler_recompute: user_id={user_id} trigger={trigger}")
        try:
            self._runner(user_id, RecomputeTrigger(trigger))
        except Exception:
            # background triggers have no caller to report to
            logger.exception(
                f"scheduler_recompute_failed: user_id={user_id} trigger={trigger}"
            )

    def enqueue_recompute(self, user_id: str, trigger: RecomputeTrigger) -> None:
        """Schedule a background recompute for ``user_id`` as soon as possible.

        Triggers for a user that is already queued but not yet started replace
        the queued job instead of adding another one.
        """
        self.scheduler.add_job(
            self._run_recompute,
            DateTrigger(),
            args=[user_id, trigger.value],
            id=f"tags_summary:{user_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _refresh_all(self) -> None:
        with session_scope() as session:
            users = TagsSummaryService(build_store(session)).known_users()
        logger.info(f"scheduler_nightly_refresh: users={len(users)}")
        for user_id in users:
            self._run_recompute(user_id, RecomputeTrigger.nightly.value)

    def start(self) -> None:
        with session_scope() as session:
            ensure_core_tables(build_store(session))

        trigger = CronTrigger(hour=self.settings.nightly_refresh_hour, minute=0)
        self.scheduler.add_job(
            self._refresh_all,
            trigger,
            id="tags_summary_nightly",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with nightly tags summary refresh at "
            f"{self.settings.nightly_refresh_hour:02d}:00"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
