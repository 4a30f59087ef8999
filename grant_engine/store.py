"""
Grant Store: the grants table and nothing but queries and conditional updates.

Every public method runs in its own transaction and returns detached
``Grant`` snapshots. State transitions that can race (revoke, expiry,
supersede, warning claim) are single ``UPDATE`` statements whose WHERE clause
re-checks the precondition, so a writer that lost a race simply matches zero
rows.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from .db import GrantRow
from .errors import StoreUnavailable
from .schemas import Grant, normalize_scope

logger = logging.getLogger(__name__)


def _active_filter(now: datetime):
    return (
        GrantRow.is_granted.is_(True),
        GrantRow.revoked_at.is_(None),
        or_(GrantRow.expires_at.is_(None), GrantRow.expires_at > now),
    )


def _still_granted():
    return (GrantRow.is_granted.is_(True), GrantRow.revoked_at.is_(None))


def _newest_first(query):
    return query.order_by(GrantRow.granted_at.desc(), GrantRow.id.desc())


def _scope_value(scope) -> Optional[List[str]]:
    scope = normalize_scope(scope)
    return list(scope) if scope else None


class GrantStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self):
        db = self._session_factory()
        try:
            with db.begin():
                yield db
        except SQLAlchemyError as e:
            logger.error("Grant store operation failed: %s", e, exc_info=True)
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    # ---------- Single-row reads / writes ----------

    def insert(
        self,
        *,
        owner_id: int,
        grantee_id: int,
        resource_id: int,
        access_level: str,
        scope: Optional[Sequence[str]],
        granted_at: datetime,
        expires_at: Optional[datetime],
        duration_hours: Optional[int],
    ) -> Grant:
        with self._transaction() as db:
            row = GrantRow(
                owner_id=owner_id,
                grantee_id=grantee_id,
                resource_id=resource_id,
                access_level=access_level,
                scope=_scope_value(scope),
                is_granted=True,
                granted_at=granted_at,
                expires_at=expires_at,
                duration_hours=duration_hours,
            )
            db.add(row)
            db.flush()
            # Timestamps are only aware once reloaded.
            db.refresh(row)
            return Grant.model_validate(row)

    def get(self, grant_id: int) -> Optional[Grant]:
        with self._transaction() as db:
            row = db.get(GrantRow, grant_id)
            return Grant.model_validate(row) if row else None

    def history(self, owner_id: int, grantee_id: int, resource_id: int) -> List[Grant]:
        """All rows for the key, most recently granted first."""
        with self._transaction() as db:
            rows = _newest_first(
                db.query(GrantRow).filter(
                    GrantRow.owner_id == owner_id,
                    GrantRow.grantee_id == grantee_id,
                    GrantRow.resource_id == resource_id,
                )
            ).all()
            return [Grant.model_validate(r) for r in rows]

    def reactivate(
        self,
        grant_id: int,
        *,
        access_level: str,
        scope: Optional[Sequence[str]],
        granted_at: datetime,
        expires_at: Optional[datetime],
        duration_hours: Optional[int],
    ) -> Optional[Grant]:
        """
        Turn an existing row back on. is_granted, revoked_at and expires_at are
        written by one statement, so a concurrent expiry sweep either runs
        before it or no longer matches the row.
        """
        with self._transaction() as db:
            updated = (
                db.query(GrantRow)
                .filter(GrantRow.id == grant_id)
                .update(
                    {
                        GrantRow.is_granted: True,
                        GrantRow.revoked_at: None,
                        GrantRow.revoke_reason: None,
                        GrantRow.warned_at: None,
                        GrantRow.granted_at: granted_at,
                        GrantRow.expires_at: expires_at,
                        GrantRow.duration_hours: duration_hours,
                        GrantRow.access_level: access_level,
                        GrantRow.scope: _scope_value(scope),
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                return None
            row = db.get(GrantRow, grant_id, populate_existing=True)
            return Grant.model_validate(row)

    def revoke_if_active(self, grant_id: int, now: datetime, reason: str) -> bool:
        """Conditional revoke; False means someone else already ended the grant."""
        with self._transaction() as db:
            updated = (
                db.query(GrantRow)
                .filter(GrantRow.id == grant_id, *_active_filter(now))
                .update(
                    {
                        GrantRow.is_granted: False,
                        GrantRow.revoked_at: now,
                        GrantRow.revoke_reason: reason,
                    },
                    synchronize_session=False,
                )
            )
            return updated == 1

    def claim_warning(self, grant_id: int, now: datetime) -> bool:
        """Mark the current grant cycle as warned, once."""
        with self._transaction() as db:
            updated = (
                db.query(GrantRow)
                .filter(
                    GrantRow.id == grant_id,
                    GrantRow.warned_at.is_(None),
                    *_active_filter(now),
                )
                .update({GrantRow.warned_at: now}, synchronize_session=False)
            )
            return updated == 1

    # ---------- Bulk ----------

    def supersede_stale(self, owner_id: int, grantee_id: int, resource_id: int, now: datetime) -> int:
        """
        Revoke every still-granted row for the key except the most recent one.
        Keeps at most one authoritative row even when two first-time grants
        raced and both inserted.
        """
        with self._transaction() as db:
            key = (
                GrantRow.owner_id == owner_id,
                GrantRow.grantee_id == grantee_id,
                GrantRow.resource_id == resource_id,
            )
            latest = _newest_first(db.query(GrantRow.id).filter(*key)).first()
            if latest is None:
                return 0
            count = (
                db.query(GrantRow)
                .filter(*key, GrantRow.id != latest.id, *_still_granted())
                .update(
                    {
                        GrantRow.is_granted: False,
                        GrantRow.revoked_at: now,
                        GrantRow.revoke_reason: "superseded",
                    },
                    synchronize_session=False,
                )
            )
        if count:
            logger.info(
                "Superseded %d stale grant(s) for owner=%s grantee=%s resource=%s",
                count, owner_id, grantee_id, resource_id,
            )
        return count

    def find_expired(self, now: datetime) -> List[Grant]:
        with self._transaction() as db:
            rows = (
                db.query(GrantRow)
                .filter(
                    *_still_granted(),
                    GrantRow.expires_at.isnot(None),
                    GrantRow.expires_at <= now,
                )
                .all()
            )
            return [Grant.model_validate(r) for r in rows]

    def revoke_expired(self, now: datetime) -> int:
        """Flip every granted row past its expiry in one statement."""
        with self._transaction() as db:
            return (
                db.query(GrantRow)
                .filter(
                    *_still_granted(),
                    GrantRow.expires_at.isnot(None),
                    GrantRow.expires_at <= now,
                )
                .update(
                    {
                        GrantRow.is_granted: False,
                        GrantRow.revoked_at: now,
                        GrantRow.revoke_reason: "expired",
                    },
                    synchronize_session=False,
                )
            )

    def find_expiring(self, now: datetime, window_end: datetime) -> List[Grant]:
        """Active rows with now < expires_at <= window_end, soonest first."""
        with self._transaction() as db:
            rows = (
                db.query(GrantRow)
                .filter(
                    *_still_granted(),
                    GrantRow.expires_at.isnot(None),
                    GrantRow.expires_at > now,
                    GrantRow.expires_at <= window_end,
                )
                .order_by(GrantRow.expires_at.asc())
                .all()
            )
            return [Grant.model_validate(r) for r in rows]

    def revoke_many(self, grant_ids: Iterable[int], now: datetime, reason: str) -> List[Grant]:
        """
        Revoke a set of rows in one transaction. Returns snapshots of the rows
        this call actually flipped; rows already ended are left untouched.
        """
        ids = list(grant_ids)
        if not ids:
            return []
        won = []
        with self._transaction() as db:
            for grant_id in ids:
                updated = (
                    db.query(GrantRow)
                    .filter(GrantRow.id == grant_id, *_active_filter(now))
                    .update(
                        {
                            GrantRow.is_granted: False,
                            GrantRow.revoked_at: now,
                            GrantRow.revoke_reason: reason,
                        },
                        synchronize_session=False,
                    )
                )
                if updated:
                    won.append(grant_id)
            if not won:
                return []
            rows = db.query(GrantRow).filter(GrantRow.id.in_(won)).all()
            return [Grant.model_validate(r) for r in rows]

    # ---------- Listings ----------

    def rows_for_grantee(self, grantee_id: int, owner_id: Optional[int] = None) -> List[Grant]:
        """Every row visible to the grantee (optionally one owner's), newest first."""
        with self._transaction() as db:
            q = db.query(GrantRow).filter(GrantRow.grantee_id == grantee_id)
            if owner_id is not None:
                q = q.filter(GrantRow.owner_id == owner_id)
            return [Grant.model_validate(r) for r in _newest_first(q).all()]

    def rows_for_resource(self, resource_id: int, owner_id: Optional[int] = None) -> List[Grant]:
        with self._transaction() as db:
            q = db.query(GrantRow).filter(GrantRow.resource_id == resource_id)
            if owner_id is not None:
                q = q.filter(GrantRow.owner_id == owner_id)
            return [Grant.model_validate(r) for r in _newest_first(q).all()]

    def active_for_resource(self, resource_id: int, now: datetime) -> List[Grant]:
        with self._transaction() as db:
            rows = (
                db.query(GrantRow)
                .filter(GrantRow.resource_id == resource_id, *_active_filter(now))
                .all()
            )
            return [Grant.model_validate(r) for r in rows]
