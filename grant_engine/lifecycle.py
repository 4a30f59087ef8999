import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from .catalog import ResourceCatalog
from .db import as_utc, utcnow
from .errors import (
    AlreadyRevoked,
    Forbidden,
    InvalidAccessLevel,
    InvalidDuration,
    InvalidGrant,
    NotFound,
)
from .notifier import EventKind, GrantNotification, Notifier, dispatch
from .resolver import GrantResolver
from .schemas import AccessLevel, Grant, normalize_scope
from .store import GrantStore

logger = logging.getLogger(__name__)

DEFAULT_DURATION_HOURS = 24
MAX_DURATION_HOURS = 24 * 365 * 100
_DEFAULT = object()


def build_event(
    catalog: ResourceCatalog,
    kind: EventKind,
    grant: Grant,
    resource_title: Optional[str] = None,
    hours_remaining: Optional[int] = None,
) -> GrantNotification:
    grantee = catalog.lookup_person(grant.grantee_id)
    owner = catalog.lookup_person(grant.owner_id)
    if resource_title is None:
        resource = catalog.lookup_resource(grant.resource_id)
        resource_title = resource.title if resource else f"Record #{grant.resource_id}"
    return GrantNotification(
        kind=kind,
        grant_id=grant.id,
        grantee_contact=grantee.contact if grantee else None,
        grantee_name=grantee.display_name if grantee else "",
        owner_display_name=owner.display_name if owner else f"Patient #{grant.owner_id}",
        resource_title=resource_title,
        access_level=grant.access_level,
        scope=grant.scope,
        duration_hours=grant.duration_hours,
        hours_remaining=hours_remaining,
    )


def notify_grant(catalog: ResourceCatalog, notifier: Notifier, kind: EventKind, grant: Grant, **kwargs) -> bool:
    """Best-effort: building or delivering the event never raises."""
    try:
        event = build_event(catalog, kind, grant, **kwargs)
    except Exception as e:
        logger.warning("Could not build %s notification for grant %s: %s", kind.value, grant.id, e)
        return False
    return dispatch(notifier, event)


def _check_duration(duration_hours) -> None:
    if duration_hours is None:
        return
    if isinstance(duration_hours, bool) or not isinstance(duration_hours, int):
        raise InvalidDuration(f"durationHours must be an integer, got {duration_hours!r}")
    if duration_hours <= 0:
        raise InvalidDuration(f"durationHours must be positive, got {duration_hours}")
    if duration_hours > MAX_DURATION_HOURS:
        raise InvalidDuration(f"durationHours must be at most {MAX_DURATION_HOURS}, got {duration_hours}")


def _check_access_level(access_level) -> str:
    try:
        return AccessLevel(access_level).value
    except ValueError:
        raise InvalidAccessLevel(f"unknown access level {access_level!r}") from None


class GrantLifecycleManager:
    """Creates, re-grants and revokes grants. All writes go through the store."""

    def __init__(
        self,
        store: GrantStore,
        resolver: GrantResolver,
        catalog: ResourceCatalog,
        notifier: Notifier,
        default_duration_hours: int = DEFAULT_DURATION_HOURS,
    ):
        self.store = store
        self.resolver = resolver
        self.catalog = catalog
        self.notifier = notifier
        self.default_duration_hours = default_duration_hours

    def grant(
        self,
        owner_id: int,
        grantee_id: int,
        resource_id: int,
        access_level=AccessLevel.READ,
        scope: Optional[Sequence[str]] = None,
        duration_hours=_DEFAULT,
        now: Optional[datetime] = None,
    ) -> Grant:
        """
        Grant or re-grant access to one record.

        The most recent row for the key is reactivated in place when there is
        one; otherwise a new row is added. duration_hours defaults to the
        configured default (24); None means the grant never expires. An empty
        scope means the full record.
        """
        now = as_utc(now) if now else utcnow()
        if duration_hours is _DEFAULT:
            duration_hours = self.default_duration_hours
        _check_duration(duration_hours)
        level = _check_access_level(access_level)
        if owner_id == grantee_id:
            raise InvalidGrant("an owner cannot grant access to themselves")

        resource = self.catalog.lookup_resource(resource_id)
        if resource is None:
            raise NotFound(f"record {resource_id} does not exist")
        if resource.owner_id != owner_id:
            raise Forbidden(f"record {resource_id} is not owned by {owner_id}")

        scope = normalize_scope(scope)
        try:
            expires_at = now + timedelta(hours=duration_hours) if duration_hours else None
        except OverflowError:
            raise InvalidDuration(f"durationHours {duration_hours} runs past the calendar") from None
        fields = dict(
            access_level=level,
            scope=scope,
            granted_at=now,
            expires_at=expires_at,
            duration_hours=duration_hours,
        )

        grant = None
        existing = self.resolver.resolve_authoritative(owner_id, grantee_id, resource_id)
        if existing is not None:
            grant = self.store.reactivate(existing.id, **fields)
        if grant is None:
            grant = self.store.insert(owner_id=owner_id, grantee_id=grantee_id, resource_id=resource_id, **fields)
        self.store.supersede_stale(owner_id, grantee_id, resource_id, now)

        logger.info(
            "%s grant %s: owner=%s grantee=%s record=%s level=%s scope=%s expires=%s",
            "Renewed" if existing is not None else "Created",
            grant.id, owner_id, grantee_id, resource_id, level,
            list(scope) if scope else "full", expires_at.isoformat() if expires_at else "never",
        )
        notify_grant(self.catalog, self.notifier, EventKind.GRANT_CREATED, grant, resource_title=resource.title)
        return grant

    def revoke(self, grant_id: int, requesting_owner_id: int, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) if now else utcnow()
        grant = self.store.get(grant_id)
        if grant is None:
            logger.warning("Grant not found with ID: %s", grant_id)
            raise NotFound(f"grant {grant_id} does not exist")
        if grant.owner_id != requesting_owner_id:
            logger.warning("Grant %s does not belong to user %s", grant_id, requesting_owner_id)
            raise Forbidden(f"grant {grant_id} is not owned by {requesting_owner_id}")
        if not grant.is_active(now):
            raise AlreadyRevoked(f"grant {grant_id} is not active")

        # Lost to the sweeper or a concurrent revoke between the read and here.
        if not self.store.revoke_if_active(grant_id, now, "owner"):
            raise AlreadyRevoked(f"grant {grant_id} is not active")

        logger.info("Revoked grant %s for owner %s", grant_id, requesting_owner_id)
        revoked = grant.model_copy(update={"is_granted": False, "revoked_at": now, "revoke_reason": "owner"})
        notify_grant(self.catalog, self.notifier, EventKind.GRANT_REVOKED, revoked)
        return True

    def revoke_all_for_resource(self, resource_id: int, requesting_owner_id: Optional[int] = None,
                                now: Optional[datetime] = None) -> int:
        """
        Cascade used before a record is deleted. Returns how many grants were
        ended. When requesting_owner_id is given the record must exist and
        belong to that owner; internal callers that already checked pass None.
        """
        now = as_utc(now) if now else utcnow()
        if requesting_owner_id is not None:
            resource = self.catalog.lookup_resource(resource_id)
            if resource is None:
                raise NotFound(f"record {resource_id} does not exist")
            if resource.owner_id != requesting_owner_id:
                logger.warning("Record %s does not belong to user %s", resource_id, requesting_owner_id)
                raise Forbidden(f"record {resource_id} is not owned by {requesting_owner_id}")
        active = self.store.active_for_resource(resource_id, now)
        revoked = self.store.revoke_many([g.id for g in active], now, "resource_deleted")

        for g in revoked:
            notify_grant(self.catalog, self.notifier, EventKind.GRANT_REVOKED, g)
        logger.info("Revoked %d grant(s) on record %s", len(revoked), resource_id)
        return len(revoked)
