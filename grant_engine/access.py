from datetime import datetime
from typing import Any, Dict

from .db import as_utc
from .resolver import GrantResolver
from .schemas import AccessDecision


class AccessChecker:
    """
    Read side used by whatever serves record contents.
    "No grant" and "grant no longer active" produce the same denial.
    """

    def __init__(self, resolver: GrantResolver):
        self.resolver = resolver

    def check_access(self, owner_id: int, grantee_id: int, resource_id: int, now: datetime) -> AccessDecision:
        now = as_utc(now)
        grant = self.resolver.resolve_authoritative(owner_id, grantee_id, resource_id)
        if grant is None or not grant.is_active(now):
            return AccessDecision.deny()
        return AccessDecision(
            allowed=True,
            scope=grant.scope,
            access_level=grant.access_level,
            expires_at=grant.expires_at,
        )


def filter_fields(decision: AccessDecision, record: Dict[str, Any]) -> Dict[str, Any]:
    """Project a record onto what the decision allows."""
    return {name: value for name, value in record.items() if decision.permits_field(name)}
