import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cache import ResponseCache
from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, cache: ResponseCache) -> None:
        settings = get_settings()
        self.cache = cache
        self.purge_secs = settings.cache_purge_secs
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        count = self.cache.purge_expired()
        if count:
            logger.info(f"cache_purge: source={source} entries_removed={count}")
        return count

    def start(self) -> None:
        trigger = IntervalTrigger(seconds=self.purge_secs)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="cache_purge",
            replace_existing=True,
            misfire_grace_time=60,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with cache purge every {self.purge_secs}s")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
