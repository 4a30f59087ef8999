"""
Expiry sweeper.

Two independent passes, each scheduled on its own interval:

- expire: one bulk conditional UPDATE turns every granted row past its
  expiry into a revoked row. Rows re-granted in the meantime no longer match.
- warn: notifies grantees whose access ends within the warning window.
  With ``warn_once`` each grant cycle is warned at most once, claimed through
  a conditional update so several sweeper instances do not double-send.

A failing pass is logged and the next tick simply tries again.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .catalog import ResourceCatalog
from .db import as_utc, utcnow
from .lifecycle import notify_grant
from .notifier import EventKind, Notifier
from .store import GrantStore

logger = logging.getLogger(__name__)

EXPIRE_JOB_ID = "grant-expiry"
WARN_JOB_ID = "grant-expiry-warning"


class ExpirySweeper:
    def __init__(
        self,
        store: GrantStore,
        catalog: ResourceCatalog,
        notifier: Notifier,
        warning_window: timedelta = timedelta(hours=2),
        warn_once: bool = True,
        expiry_interval_seconds: int = 900,
        warning_interval_seconds: int = 3600,
    ):
        self.store = store
        self.catalog = catalog
        self.notifier = notifier
        self.warning_window = warning_window
        self.warn_once = warn_once
        self.expiry_interval_seconds = expiry_interval_seconds
        self.warning_interval_seconds = warning_interval_seconds
        self._scheduler: Optional[BackgroundScheduler] = None

    # ---------- Passes ----------

    def expire(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) if now else utcnow()
        try:
            if logger.isEnabledFor(logging.DEBUG):
                pending = self.store.find_expired(now)
                logger.debug("Expiry pass: %d candidate grant(s): %s", len(pending), [g.id for g in pending])
            count = self.store.revoke_expired(now)
        except Exception:
            logger.exception("Error during auto-revoke of expired grants")
            return 0
        if count:
            logger.info("Auto-revoked %d expired grant(s) at %s", count, now.isoformat())
        return count

    def warn(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) if now else utcnow()
        try:
            expiring = self.store.find_expiring(now, now + self.warning_window)
        except Exception:
            logger.exception("Error loading grants for expiry warnings")
            return 0

        sent = 0
        for grant in expiring:
            try:
                if self.warn_once and not self.store.claim_warning(grant.id, now):
                    continue
            except Exception:
                logger.exception("Error claiming expiry warning for grant %s", grant.id)
                continue
            hours = grant.hours_remaining(now)
            if notify_grant(self.catalog, self.notifier, EventKind.EXPIRY_WARNING, grant, hours_remaining=hours):
                logger.info("Sent expiry warning for grant %s (expires in %d hours)", grant.id, hours)
                sent += 1
        return sent

    def run_once(self, now: Optional[datetime] = None):
        """Both passes, expiry first. Returns (expired, warned)."""
        now = as_utc(now) if now else utcnow()
        return self.expire(now), self.warn(now)

    # ---------- Scheduling ----------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self.expire,
            IntervalTrigger(seconds=self.expiry_interval_seconds),
            id=EXPIRE_JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        scheduler.add_job(
            self.warn,
            IntervalTrigger(seconds=self.warning_interval_seconds),
            id=WARN_JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Expiry sweeper started (expiry every %ss, warnings every %ss)",
            self.expiry_interval_seconds, self.warning_interval_seconds,
        )

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Expiry sweeper stopped")
