import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from fx_rates import ConfigurationError, CurrencyConverter


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.refresh_hours = settings.fx_refresh_hours
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"fx_refresh_run: source={source}")
        with session_scope() as session:
            try:
                summary = CurrencyConverter(session).update_exchange_rates()
            except ConfigurationError as exc:
                logger.error(f"fx_refresh_run: source={source} error={exc}")
                return
            logger.info(
                f"fx_refresh_run: source={source} fetched={summary.fetched} "
                f"updated={len(summary.updated)} missing={len(summary.missing)}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(hours=self.refresh_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="fx_refresh",
            replace_existing=True,
            misfire_grace_time=600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with fx refresh every {self.refresh_hours}h")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
