"""API tests for policy documents and bindings."""

import json

import pytest
from httpx import AsyncClient

PROVINCE_DOC = {
    "Version": "2024-02-07",
    "Statement": [
        {"Effect": "Allow", "Action": ["territori.municipis.view"], "Resource": ["provincia:3/*"]}
    ],
}


@pytest.fixture
def admin(make):
    return make.admin()


async def _create(client, headers, name="provincials", document=PROVINCE_DOC):
    return await client.post(
        "/admin/policies", json={"name": name, "document": document}, headers=headers
    )


@pytest.mark.asyncio
async def test_requires_admin(client: AsyncClient, make, auth_headers):
    plain = make.user("plain")
    response = await _create(client, auth_headers(plain.id))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_and_read_document(client: AsyncClient, admin, auth_headers):
    headers = auth_headers(admin.id)

    created = await _create(client, headers)
    assert created.status_code == 201
    policy_id = created.json()["id"]

    response = await client.get(f"/admin/policies/{policy_id}/document", headers=headers)
    assert response.status_code == 200
    document = json.loads(response.json()["document"])
    assert document["Version"] == "2024-02-07"
    assert document["Statement"] == PROVINCE_DOC["Statement"]


@pytest.mark.asyncio
async def test_invalid_replacement_changes_nothing(client: AsyncClient, admin, auth_headers):
    headers = auth_headers(admin.id)
    policy_id = (await _create(client, headers)).json()["id"]

    response = await client.put(
        f"/admin/policies/{policy_id}",
        json={
            "name": "provincials",
            "document": {"Statement": [{"Action": "territori.planetes.view", "Resource": "global"}]},
        },
        headers=headers,
    )
    assert response.status_code == 400
    assert "unknown action" in response.json()["detail"]

    document = (await client.get(f"/admin/policies/{policy_id}/document", headers=headers)).json()
    assert json.loads(document["document"])["Statement"] == PROVINCE_DOC["Statement"]


@pytest.mark.asyncio
async def test_document_errors(client: AsyncClient, admin, auth_headers):
    headers = auth_headers(admin.id)

    assert (await _create(client, headers, document="{oops")).status_code == 400
    assert (await _create(client, headers)).status_code == 201
    assert (await _create(client, headers)).status_code == 409
    assert (await client.get("/admin/policies/404/document", headers=headers)).status_code == 404
    replaced = await client.put(
        "/admin/policies/404", json={"name": "x", "document": PROVINCE_DOC}, headers=headers
    )
    assert replaced.status_code == 404


@pytest.mark.asyncio
async def test_user_binding_changes_permissions(client: AsyncClient, make, admin, auth_headers):
    headers = auth_headers(admin.id)
    anna = make.user("anna")
    policy_id = (await _create(client, headers)).json()["id"]

    before = (await client.get("/me/permissions", headers=auth_headers(anna.id))).json()
    assert before["permissions"] == []

    assigned = await client.put(f"/admin/policies/{policy_id}/users/{anna.id}", headers=headers)
    assert assigned.status_code == 204
    after = (await client.get("/me/permissions", headers=auth_headers(anna.id))).json()
    assert after["permissions"] == ["territori.municipis.view"]

    removed = await client.delete(f"/admin/policies/{policy_id}/users/{anna.id}", headers=headers)
    assert removed.status_code == 204
    final = (await client.get("/me/permissions", headers=auth_headers(anna.id))).json()
    assert final["permissions"] == []


@pytest.mark.asyncio
async def test_group_binding_changes_permissions(client: AsyncClient, make, admin, auth_headers):
    headers = auth_headers(admin.id)
    anna = make.user("anna")
    group = make.group("arxivers")
    policy_id = (await _create(client, headers)).json()["id"]

    assert (await client.put(f"/admin/policies/{policy_id}/groups/{group.id}", headers=headers)).status_code == 204
    assert (
        await client.put(f"/admin/policies/groups/{group.id}/members/{anna.id}", headers=headers)
    ).status_code == 204

    perms = (await client.get("/me/permissions", headers=auth_headers(anna.id))).json()
    assert perms["permissions"] == ["territori.municipis.view"]

    assert (
        await client.delete(f"/admin/policies/groups/{group.id}/members/{anna.id}", headers=headers)
    ).status_code == 204
    perms = (await client.get("/me/permissions", headers=auth_headers(anna.id))).json()
    assert perms["permissions"] == []


@pytest.mark.asyncio
async def test_binding_unknown_rows(client: AsyncClient, make, admin, auth_headers):
    headers = auth_headers(admin.id)
    policy_id = (await _create(client, headers)).json()["id"]

    assert (await client.put(f"/admin/policies/{policy_id}/users/404", headers=headers)).status_code == 404
    assert (await client.put(f"/admin/policies/404/users/{admin.id}", headers=headers)).status_code == 404
    assert (await client.put(f"/admin/policies/{policy_id}/groups/404", headers=headers)).status_code == 404
