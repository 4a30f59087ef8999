from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class AccessLevel(str, Enum):
    """Capability label handed to the resource server; never interpreted here."""

    READ = "READ"
    WRITE = "WRITE"
    FULL_ACCESS = "FULL_ACCESS"


def normalize_scope(fields: Optional[Iterable[str]]) -> Optional[Tuple[str, ...]]:
    """
    Ordered, de-duplicated field names. Empty or missing means the full record,
    which is represented as None.
    """
    if not fields:
        return None
    out: List[str] = []
    for f in fields:
        name = str(f).strip()
        if name and name not in out:
            out.append(name)
    return tuple(out) or None


# ---------- Engine-side snapshots ----------

class Grant(BaseModel):
    """Immutable snapshot of one row of the grants table."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    owner_id: int
    grantee_id: int
    resource_id: int
    scope: Optional[Tuple[str, ...]] = None
    access_level: str
    is_granted: bool
    granted_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    duration_hours: Optional[int] = None
    warned_at: Optional[datetime] = None
    revoke_reason: Optional[str] = None

    @field_validator("scope", mode="before")
    @classmethod
    def _scope(cls, v):
        return normalize_scope(v)

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.owner_id, self.grantee_id, self.resource_id)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        # The only predicate authorization decisions may use.
        return self.is_granted and self.revoked_at is None and not self.is_expired(now)

    def hours_remaining(self, now: datetime) -> int:
        """Whole hours left; -1 when the grant never expires."""
        if self.expires_at is None:
            return -1
        seconds = (self.expires_at - now).total_seconds()
        return max(0, int(seconds // 3600))


class AccessDecision(BaseModel):
    """
    Result of one access check. A denial carries no reason on purpose.
    scope None on an allowed decision means the full record.
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool
    scope: Optional[Tuple[str, ...]] = None
    access_level: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def deny(cls) -> "AccessDecision":
        return cls(allowed=False)

    @property
    def full_scope(self) -> bool:
        return self.allowed and self.scope is None

    def permits_field(self, name: str) -> bool:
        if not self.allowed:
            return False
        return self.scope is None or name in self.scope


class GrantListing(BaseModel):
    model_config = ConfigDict(frozen=True)

    grant: Grant
    resource_title: str
    hours_remaining: int
    is_expiring_soon: bool


# ---------- API payloads ----------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GrantRequest(_CamelModel):
    owner_id: int
    grantee_id: int
    resource_id: int
    access_level: str = AccessLevel.READ.value
    scope: List[str] = Field(default_factory=list)   # e.g. ["bloodGroup", "heartRate"]; empty = full record
    duration_hours: Optional[int] = 24               # explicit null = never expires


class GrantOut(_CamelModel):
    id: int
    owner_id: int
    grantee_id: int
    resource_id: int
    scope: List[str]
    full_record: bool
    access_level: str
    is_granted: bool
    granted_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    duration_hours: Optional[int] = None
    resource_title: Optional[str] = None
    hours_remaining: Optional[int] = None
    is_expiring_soon: Optional[bool] = None

    @classmethod
    def from_grant(cls, grant: Grant) -> "GrantOut":
        return cls(
            id=grant.id,
            owner_id=grant.owner_id,
            grantee_id=grant.grantee_id,
            resource_id=grant.resource_id,
            scope=list(grant.scope or ()),
            full_record=grant.scope is None,
            access_level=grant.access_level,
            is_granted=grant.is_granted,
            granted_at=grant.granted_at,
            expires_at=grant.expires_at,
            revoked_at=grant.revoked_at,
            duration_hours=grant.duration_hours,
        )

    @classmethod
    def from_listing(cls, listing: GrantListing) -> "GrantOut":
        out = cls.from_grant(listing.grant)
        return out.model_copy(update={
            "resource_title": listing.resource_title,
            "hours_remaining": listing.hours_remaining,
            "is_expiring_soon": listing.is_expiring_soon,
        })


class AccessCheckOut(_CamelModel):
    allowed: bool
    scope: List[str]
    full_record: bool
    access_level: Optional[str] = None
    expires_at: Optional[datetime] = None


class SweepOut(_CamelModel):
    expired: int
    warned: int
