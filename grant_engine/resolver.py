import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .catalog import ResourceCatalog
from .schemas import Grant
from .store import GrantStore

logger = logging.getLogger(__name__)


def _latest_per_key(rows: Iterable[Grant]) -> List[Grant]:
    """rows must be newest first; keeps the first row seen for each key."""
    seen: Dict[Tuple[int, int, int], Grant] = {}
    for g in rows:
        seen.setdefault(g.key, g)
    return list(seen.values())


class GrantResolver:
    """
    Decides which row is authoritative for an (owner, grantee, resource) key:
    always the most recently granted one. Callers never look at duplicates.
    """

    def __init__(self, store: GrantStore, catalog: ResourceCatalog):
        self.store = store
        self.catalog = catalog

    def resolve_authoritative(self, owner_id: int, grantee_id: int, resource_id: int) -> Optional[Grant]:
        rows = self.store.history(owner_id, grantee_id, resource_id)
        return rows[0] if rows else None

    def resolve_active_permissions(
        self, owner_id: Optional[int], grantee_id: int, now: datetime
    ) -> List[Grant]:
        """
        Every authoritative, active grant the grantee holds on owner_id's
        records (all owners when owner_id is None). Rows pointing at a record
        that no longer exists, or that has changed hands, are skipped.
        """
        rows = self.store.rows_for_grantee(grantee_id, owner_id=owner_id)
        out = []
        for g in _latest_per_key(rows):
            if not g.is_active(now):
                continue
            if self._is_orphaned(g):
                continue
            out.append(g)
        return out

    def resolve_active_for_resource(self, owner_id: int, resource_id: int, now: datetime) -> List[Grant]:
        rows = self.store.rows_for_resource(resource_id, owner_id=owner_id)
        return [g for g in _latest_per_key(rows) if g.is_active(now)]

    def _is_orphaned(self, grant: Grant) -> bool:
        try:
            info = self.catalog.lookup_resource(grant.resource_id)
        except Exception as e:
            logger.warning("Skipping grant %s: record %s could not be loaded: %s", grant.id, grant.resource_id, e)
            return True
        if info is None:
            logger.warning("Skipping grant %s: record %s no longer exists", grant.id, grant.resource_id)
            return True
        if info.owner_id != grant.owner_id:
            logger.warning(
                "Skipping grant %s: record %s is owned by %s, not %s",
                grant.id, grant.resource_id, info.owner_id, grant.owner_id,
            )
            return True
        return False
