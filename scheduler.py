import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete, or_, update
from sqlalchemy.orm import Session

from database import session_scope
from models import PasswordReset, UserSession


logger = logging.getLogger(__name__)


def purge_expired_credentials(session: Session, now: datetime) -> tuple[int, int]:
    """Drop spent reset tokens and revoke sessions past their expiry."""
    resets = session.execute(
        delete(PasswordReset).where(
            or_(PasswordReset.used.is_(True), PasswordReset.expires_at < now)
        )
    ).rowcount
    sessions = session.execute(
        update(UserSession)
        .where(UserSession.revoke.is_(False), UserSession.expires_at < now)
        .values(revoke=True)
    ).rowcount
    return resets or 0, sessions or 0


class SchedulerManager:
    def __init__(self) -> None:
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"housekeeping_run: source={source}")
        with session_scope() as session:
            resets, sessions = purge_expired_credentials(session, datetime.utcnow())
        logger.info(
            f"housekeeping_run: source={source} resets_purged={resets} "
            f"sessions_revoked={sessions}"
        )

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly"],
            id="credential_housekeeping",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with hourly credential housekeeping")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
