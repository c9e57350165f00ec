from uuid import uuid4

import pytest
from sqlalchemy import select

from crowdledger.models import AuditLog, UserRole
from crowdledger.services import funding


@pytest.mark.anyio("asyncio")
async def test_user_creation_masks_pii_in_audit(client, db_session):
    tag = uuid4().hex[:8]
    payload = {
        "username": f"audit-user-{tag}",
        "email": f"audit-user-{tag}@example.com",
        "firstname": "Awa",
        "lastname": "Diop",
        "contact": "+221770001234",
    }
    resp = await client.post("/users", json=payload)
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "Donor"
    assert "contact" not in body

    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "USER_CREATED", AuditLog.entity_id == body["id"])
    ).first()
    assert audit is not None
    assert audit.data_json["email"] == "***@example.com"


@pytest.mark.anyio("asyncio")
async def test_duplicate_user_is_a_conflict(client):
    tag = uuid4().hex[:8]
    payload = {"username": f"dup-{tag}", "email": f"dup-{tag}@example.com"}
    assert (await client.post("/users", json=payload)).status_code == 201

    resp = await client.post("/users", json={**payload, "email": f"other-{tag}@example.com"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "USER_EXISTS"


@pytest.mark.anyio("asyncio")
async def test_invalid_email_is_rejected(client):
    resp = await client.post("/users", json={"username": "bad-email", "email": "not-an-email"})
    assert resp.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_read_user_requires_identity(client, make_user, headers_for):
    user = make_user()
    assert (await client.get(f"/users/{user.id}")).status_code == 401
    assert (await client.get(f"/users/{user.id}", headers={"X-User-Id": "abc"})).status_code == 401
    assert (await client.get(f"/users/{user.id}", headers={"X-User-Id": "987654321"})).status_code == 401

    resp = await client.get(f"/users/{user.id}", headers=headers_for(user))
    assert resp.status_code == 200
    assert resp.json()["username"] == user.username


@pytest.mark.anyio("asyncio")
async def test_delete_user_rules(client, db_session, admin, creator, make_user, make_campaign, headers_for):
    idle = make_user()
    donor = make_user()
    campaign = make_campaign(creator)
    funding.record_donation(db_session, donor.id, campaign.id, 10)

    resp = await client.delete(f"/users/{idle.id}", headers=headers_for(donor))
    assert resp.status_code == 403

    resp = await client.delete(f"/users/{donor.id}", headers=headers_for(admin))
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "HAS_DEPENDENTS"

    resp = await client.delete(f"/users/{idle.id}", headers=headers_for(admin))
    assert resp.status_code == 204
    resp = await client.get(f"/users/{idle.id}", headers=headers_for(admin))
    assert resp.status_code == 404


@pytest.mark.anyio("asyncio")
async def test_roles_are_exposed(client, make_user, headers_for):
    user = make_user(UserRole.CampaignCreator)
    resp = await client.get(f"/users/{user.id}", headers=headers_for(user))
    assert resp.json()["role"] == "CampaignCreator"


@pytest.mark.anyio("asyncio")
async def test_update_user_rules(client, db_session, admin, make_user, headers_for):
    user = make_user()
    other = make_user()
    tag = uuid4().hex[:8]

    resp = await client.patch(
        f"/users/{user.id}", json={"firstname": "Fatou", "email": f"fatou-{tag}@example.com"}, headers=headers_for(user)
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["firstname"] == "Fatou"
    assert resp.json()["email"] == f"fatou-{tag}@example.com"

    resp = await client.patch(f"/users/{user.id}", json={"firstname": "Mallory"}, headers=headers_for(other))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "NOT_PROFILE_OWNER"

    resp = await client.patch(f"/users/{other.id}", json={"username": user.username}, headers=headers_for(other))
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "USER_EXISTS"

    resp = await client.patch(f"/users/{other.id}", json={}, headers=headers_for(other))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "EMPTY_UPDATE"

    resp = await client.patch(f"/users/{other.id}", json={"lastname": "Ndiaye"}, headers=headers_for(admin))
    assert resp.status_code == 200
    assert resp.json()["lastname"] == "Ndiaye"

    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "USER_UPDATED", AuditLog.entity_id == user.id)
    ).first()
    assert audit is not None
    assert audit.data_json["email"] == "***@example.com"


@pytest.mark.anyio("asyncio")
async def test_campaigns_filtered_by_donor(client, db_session, creator, make_user, make_campaign):
    donor = make_user()
    backed = make_campaign(creator)
    make_campaign(creator)
    funding.record_donation(db_session, donor.id, backed.id, 10)
    funding.record_donation(db_session, donor.id, backed.id, 15)

    resp = await client.get("/campaigns", params={"donor_id": donor.id})
    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()] == [backed.id]

    resp = await client.get("/campaigns", params={"donor_id": make_user().id})
    assert resp.json() == []
