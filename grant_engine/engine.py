from datetime import datetime, timedelta
from typing import List, Optional

from .access import AccessChecker, filter_fields
from .catalog import ResourceCatalog, SqlCatalog
from .config import Settings
from .db import as_utc, create_db_engine, create_session_factory, init_db, utcnow
from .lifecycle import GrantLifecycleManager
from .notifier import Notifier, build_notifier
from .resolver import GrantResolver
from .schemas import AccessDecision, Grant, GrantListing
from .store import GrantStore
from .sweeper import ExpirySweeper


class GrantEngine:
    """
    Wires store, resolver, lifecycle manager, checker and sweeper together and
    exposes the public operations. Every operation takes an optional ``now``;
    it defaults to the current UTC time.
    """

    def __init__(self, store: GrantStore, catalog: ResourceCatalog, notifier: Notifier, settings: Settings):
        self.settings = settings
        self.store = store
        self.catalog = catalog
        self.notifier = notifier
        self.warning_window = timedelta(hours=settings.warning_window_hours)

        self.resolver = GrantResolver(store, catalog)
        self.lifecycle = GrantLifecycleManager(
            store, self.resolver, catalog, notifier,
            default_duration_hours=settings.default_duration_hours,
        )
        self.checker = AccessChecker(self.resolver)
        self.sweeper = ExpirySweeper(
            store, catalog, notifier,
            warning_window=self.warning_window,
            warn_once=settings.warn_once,
            expiry_interval_seconds=settings.expiry_interval_seconds,
            warning_interval_seconds=settings.warning_interval_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings, notifier: Optional[Notifier] = None) -> "GrantEngine":
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)
        return cls(
            GrantStore(session_factory),
            SqlCatalog(session_factory),
            notifier or build_notifier(settings),
            settings,
        )

    # ---------- Writes ----------

    def grant(self, owner_id: int, grantee_id: int, resource_id: int, **kwargs) -> Grant:
        return self.lifecycle.grant(owner_id, grantee_id, resource_id, **kwargs)

    def revoke(self, grant_id: int, owner_id: int, now: Optional[datetime] = None) -> bool:
        return self.lifecycle.revoke(grant_id, owner_id, now=now)

    def revoke_all_for_resource(self, resource_id: int, owner_id: Optional[int] = None,
                                now: Optional[datetime] = None) -> int:
        return self.lifecycle.revoke_all_for_resource(resource_id, requesting_owner_id=owner_id, now=now)

    # ---------- Reads ----------

    def check_access(self, owner_id: int, grantee_id: int, resource_id: int,
                     now: Optional[datetime] = None) -> AccessDecision:
        return self.checker.check_access(owner_id, grantee_id, resource_id, as_utc(now) if now else utcnow())

    def view_record(self, grantee_id: int, resource_id: int, now: Optional[datetime] = None):
        """
        The record as the grantee may see it, or None when access is denied
        for any reason (including the record not existing).
        """
        resource = self.catalog.lookup_resource(resource_id)
        if resource is None:
            return None
        decision = self.check_access(resource.owner_id, grantee_id, resource_id, now)
        if not decision.allowed:
            return None
        record = self.catalog.load_record(resource_id)
        if record is None:
            return None
        return decision, filter_fields(decision, record)

    def list_active_for_grantee(self, grantee_id: int, now: Optional[datetime] = None) -> List[GrantListing]:
        now = as_utc(now) if now else utcnow()
        grants = self.resolver.resolve_active_permissions(None, grantee_id, now)
        return [self._listing(g, now) for g in grants]

    def list_active_for_owner_resource(self, owner_id: int, resource_id: int,
                                       now: Optional[datetime] = None) -> List[GrantListing]:
        now = as_utc(now) if now else utcnow()
        grants = self.resolver.resolve_active_for_resource(owner_id, resource_id, now)
        return [self._listing(g, now) for g in grants]

    def grant_history(self, owner_id: int, grantee_id: int, resource_id: int) -> List[Grant]:
        return self.store.history(owner_id, grantee_id, resource_id)

    def _listing(self, grant: Grant, now: datetime) -> GrantListing:
        resource = self.catalog.lookup_resource(grant.resource_id)
        hours = grant.hours_remaining(now)
        return GrantListing(
            grant=grant,
            resource_title=resource.title if resource else f"Record #{grant.resource_id}",
            hours_remaining=hours,
            is_expiring_soon=grant.expires_at is not None and grant.expires_at - now <= self.warning_window,
        )
