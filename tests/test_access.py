from datetime import timedelta

import pytest

from conftest import GRANTEE, OTHER_GRANTEE, OTHER_OWNER, OTHER_OWNERS_RECORD, OWNER, RECORD
from grant_engine.access import filter_fields
from grant_engine.db import MedicalRecord
from grant_engine.schemas import AccessDecision, Grant


def make_grant(t0, **kw):
    fields = dict(
        id=1, owner_id=OWNER, grantee_id=GRANTEE, resource_id=RECORD,
        access_level="READ", is_granted=True, granted_at=t0,
    )
    fields.update(kw)
    return Grant(**fields)


@pytest.mark.parametrize(
    "is_granted, revoked, expires_in, expected",
    [
        (True, False, None, True),
        (True, False, 1, True),
        (True, False, 0, False),
        (True, False, -1, False),
        (True, True, None, False),
        (False, False, None, False),
        (False, False, 5, False),
    ],
)
def test_active_predicate(t0, is_granted, revoked, expires_in, expected):
    g = make_grant(
        t0,
        is_granted=is_granted,
        revoked_at=t0 if revoked else None,
        expires_at=None if expires_in is None else t0 + timedelta(hours=expires_in),
    )
    assert g.is_active(t0) is expected


def test_no_grant_and_inactive_grant_look_the_same(grants, t0, hours):
    never = grants.check_access(OWNER, GRANTEE, RECORD, now=t0)

    g = grants.grant(OWNER, GRANTEE, RECORD, duration_hours=1, now=t0)
    expired = grants.check_access(OWNER, GRANTEE, RECORD, now=hours(2))
    grants.grant(OWNER, GRANTEE, RECORD, now=hours(3))
    grants.revoke(g.id, OWNER, now=hours(4))
    revoked = grants.check_access(OWNER, GRANTEE, RECORD, now=hours(5))

    assert never == expired == revoked == AccessDecision.deny()


def test_check_uses_active_predicate_not_is_granted(grants, t0, hours):
    # Past expiry but not yet swept: is_granted is still true on the row.
    grants.grant(OWNER, GRANTEE, RECORD, duration_hours=1, now=t0)
    row = grants.resolver.resolve_authoritative(OWNER, GRANTEE, RECORD)
    assert row.is_granted
    assert not grants.check_access(OWNER, GRANTEE, RECORD, now=hours(1)).allowed


def test_scope_narrowing(grants, t0, hours):
    grants.grant(OWNER, GRANTEE, RECORD, scope=["bloodGroup", "heartRate"], now=t0)
    decision = grants.check_access(OWNER, GRANTEE, RECORD, now=hours(1))

    assert decision.allowed
    assert not decision.full_scope
    assert decision.scope == ("bloodGroup", "heartRate")
    for name in ("medication", "diagnosisCondition", "title", "weight"):
        assert not decision.permits_field(name)

    decision, fields = grants.view_record(GRANTEE, RECORD, now=hours(1))
    assert fields == {"bloodGroup": "O+", "heartRate": 76}


def test_full_scope_returns_whole_record(grants, t0, hours):
    grants.grant(OWNER, GRANTEE, RECORD, now=t0)
    decision, fields = grants.view_record(GRANTEE, RECORD, now=hours(1))

    assert decision.full_scope
    assert fields["title"] == "Annual check-up 2024"
    assert fields["medication"] == "Amlodipine 5mg"


def test_filter_fields_on_denial():
    assert filter_fields(AccessDecision.deny(), {"bloodGroup": "O+"}) == {}


def test_view_record_denied(grants, t0):
    assert grants.view_record(GRANTEE, RECORD, now=t0) is None
    assert grants.view_record(GRANTEE, 999, now=t0) is None


def test_list_active_for_grantee(grants, t0, hours):
    grants.grant(OWNER, GRANTEE, RECORD, duration_hours=3, now=t0)
    revoked = grants.grant(OWNER, GRANTEE, 11, now=t0)
    grants.revoke(revoked.id, OWNER, now=hours(0.5))
    grants.grant(OTHER_OWNER, GRANTEE, OTHER_OWNERS_RECORD, duration_hours=None, now=t0)
    grants.grant(OWNER, OTHER_GRANTEE, RECORD, now=t0)

    listing = {x.grant.resource_id: x for x in grants.list_active_for_grantee(GRANTEE, now=hours(1.5))}

    assert set(listing) == {RECORD, OTHER_OWNERS_RECORD}
    assert listing[RECORD].hours_remaining == 1
    assert listing[RECORD].is_expiring_soon
    assert listing[RECORD].resource_title == "Annual check-up 2024"
    assert listing[OTHER_OWNERS_RECORD].hours_remaining == -1
    assert not listing[OTHER_OWNERS_RECORD].is_expiring_soon


def test_orphaned_rows_are_skipped(grants, session_factory, t0, hours):
    grants.grant(OWNER, GRANTEE, RECORD, now=t0)
    grants.grant(OWNER, GRANTEE, 11, now=t0)
    grants.grant(OTHER_OWNER, GRANTEE, OTHER_OWNERS_RECORD, now=t0)

    db = session_factory()
    try:
        db.delete(db.get(MedicalRecord, 11))
        db.get(MedicalRecord, OTHER_OWNERS_RECORD).owner_id = OWNER
        db.commit()
    finally:
        db.close()

    visible = grants.resolver.resolve_active_permissions(None, GRANTEE, hours(1))
    assert [g.resource_id for g in visible] == [RECORD]
    assert [g.resource_id for g in grants.resolver.resolve_active_permissions(OWNER, GRANTEE, hours(1))] == [RECORD]


def test_orphan_lookup_error_does_not_fail_the_listing(grants, t0, hours, monkeypatch):
    grants.grant(OWNER, GRANTEE, RECORD, now=t0)
    grants.grant(OWNER, GRANTEE, 11, now=t0)

    real_lookup = grants.catalog.lookup_resource

    def flaky(resource_id):
        if resource_id == 11:
            raise RuntimeError("corrupt row")
        return real_lookup(resource_id)

    monkeypatch.setattr(grants.catalog, "lookup_resource", flaky)
    visible = grants.resolver.resolve_active_permissions(OWNER, GRANTEE, hours(1))
    assert [g.resource_id for g in visible] == [RECORD]


def test_list_active_for_owner_resource(grants, t0, hours):
    grants.grant(OWNER, GRANTEE, RECORD, now=t0)
    g = grants.grant(OWNER, OTHER_GRANTEE, RECORD, now=t0)
    grants.grant(OWNER, 5, RECORD, duration_hours=1, now=t0)
    grants.revoke(g.id, OWNER, now=hours(0.5))

    listing = grants.list_active_for_owner_resource(OWNER, RECORD, now=hours(2))
    assert [x.grant.grantee_id for x in listing] == [GRANTEE]
    assert grants.list_active_for_owner_resource(OTHER_OWNER, RECORD, now=hours(2)) == []
