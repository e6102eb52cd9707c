"""API tests for wiki changes, the moderation queue and bulk moderation."""

import json

import pytest
from httpx import AsyncClient

from genealogia.core.config import settings
from genealogia.db.enums import ModerationStatus, WikiChangeType
from genealogia.db.models import Municipi


@pytest.fixture
def world(make):
    make.territory()
    editor = make.user("editor")
    moderator = make.user_with_grants("mod", [("territori.municipis.edit", "municipi", 5, False)])
    return editor, moderator


async def _propose(client, headers, after, object_type="municipi", object_id=5):
    return await client.post(
        f"/wiki/{object_type}/{object_id}/changes",
        json={"before": {"Nom": "Municipi 5"}, "after": after},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient, world):
    response = await client.get("/wiki/municipi/5/changes")
    assert response.status_code == 401

    response = await client.get("/wiki/municipi/5/changes", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_editor_proposal_is_queued(client: AsyncClient, db, world, auth_headers):
    editor, _ = world

    response = await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})

    assert response.status_code == 201
    data = response.json()
    assert data["moderacio_estat"] == ModerationStatus.PENDING.value
    assert data["changed_by"] == editor.id
    assert json.loads(data["metadata"])["after"] == {"Nom": "Vic"}
    assert db.get(Municipi, 5).nom == "Municipi 5"


@pytest.mark.asyncio
async def test_moderator_publishes_directly(client: AsyncClient, db, world, auth_headers):
    _, moderator = world

    response = await _propose(client, auth_headers(moderator.id), {"Nom": "Vic"})

    assert response.status_code == 201
    assert response.json()["moderacio_estat"] == ModerationStatus.PUBLISHED.value
    db.expire_all()
    assert db.get(Municipi, 5).nom == "Vic"


@pytest.mark.asyncio
async def test_proposal_errors(client: AsyncClient, world, auth_headers, monkeypatch):
    editor, _ = world
    headers = auth_headers(editor.id)

    assert (await _propose(client, headers, {"Nom": "X"}, object_id=404)).status_code == 404
    assert (await _propose(client, headers, {"Nom": "X"}, object_type="planeta")).status_code == 400
    assert (await _propose(client, headers, {})).status_code == 400

    monkeypatch.setattr(settings, "WIKI_MAX_PENDING_PER_USER_OBJECT", 1)
    assert (await _propose(client, headers, {"Nom": "A"})).status_code == 201
    assert (await _propose(client, headers, {"Nom": "B"})).status_code == 429


@pytest.mark.asyncio
async def test_object_changes_visibility(client: AsyncClient, make, world, auth_headers):
    editor, moderator = world
    other = make.user("other")
    await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})
    await _propose(client, auth_headers(other.id), {"Nom": "Osona"})

    mine = await client.get("/wiki/municipi/5/changes", headers=auth_headers(editor.id))
    everything = await client.get("/wiki/municipi/5/changes", headers=auth_headers(moderator.id))

    assert [c["changed_by"] for c in mine.json()] == [editor.id]
    assert [c["changed_by"] for c in everything.json()] == [editor.id, other.id]


@pytest.mark.asyncio
async def test_pending_queue_is_filtered_by_authority(client: AsyncClient, world, auth_headers):
    editor, moderator = world
    await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})

    as_moderator = (await client.get("/wiki/pending", headers=auth_headers(moderator.id))).json()
    as_editor = (await client.get("/wiki/pending", headers=auth_headers(editor.id))).json()

    assert len(as_moderator["items"]) == 1
    assert as_moderator["total"] == 1
    assert as_editor["items"] == []
    assert as_editor["total"] == 1


@pytest.mark.asyncio
async def test_approve_flow(client: AsyncClient, db, world, auth_headers):
    editor, moderator = world
    change_id = (await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})).json()["id"]

    forbidden = await client.post(f"/wiki/changes/{change_id}/approve", headers=auth_headers(editor.id))
    assert forbidden.status_code == 403

    approved = await client.post(
        f"/wiki/changes/{change_id}/approve", json={"note": "ok"}, headers=auth_headers(moderator.id)
    )
    assert approved.status_code == 200
    assert approved.json()["moderacio_estat"] == ModerationStatus.PUBLISHED.value
    assert approved.json()["moderated_motiu"] == "ok"
    db.expire_all()
    assert db.get(Municipi, 5).nom == "Vic"

    again = await client.post(f"/wiki/changes/{change_id}/approve", headers=auth_headers(moderator.id))
    assert again.status_code == 200

    reject = await client.post(f"/wiki/changes/{change_id}/reject", headers=auth_headers(moderator.id))
    assert reject.status_code == 409

    missing = await client.post("/wiki/changes/404/approve", headers=auth_headers(moderator.id))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_reject_flow(client: AsyncClient, db, world, auth_headers):
    editor, moderator = world
    change_id = (await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})).json()["id"]

    response = await client.post(
        f"/wiki/changes/{change_id}/reject", json={"note": "no source"}, headers=auth_headers(moderator.id)
    )

    assert response.status_code == 200
    assert response.json()["moderacio_estat"] == ModerationStatus.REJECTED.value
    assert db.get(Municipi, 5).nom == "Municipi 5"


@pytest.mark.asyncio
async def test_change_diff(client: AsyncClient, make, world, auth_headers):
    editor, _ = world
    stranger = make.user("stranger")
    change_id = (await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})).json()["id"]

    response = await client.get(f"/wiki/changes/{change_id}/diff", headers=auth_headers(editor.id))
    assert response.status_code == 200
    assert response.json()["fields"] == [{"key": "Nom", "before": "Municipi 5", "after": "Vic"}]

    hidden = await client.get(f"/wiki/changes/{change_id}/diff", headers=auth_headers(stranger.id))
    assert hidden.status_code == 404


@pytest.mark.asyncio
async def test_history(client: AsyncClient, world, auth_headers):
    _, moderator = world
    headers = auth_headers(moderator.id)
    await _propose(client, headers, {"Nom": "Vic"})
    await client.post(
        "/wiki/municipi/5/changes",
        json={"before": {"Nom": "Vic"}, "after": {"Nom": "Vic", "Tipus": "ciutat"}},
        headers=headers,
    )

    response = await client.get("/wiki/municipi/5/history", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["versions"] == 3
    assert data["fields"] == [
        {"key": "Nom", "before": "Municipi 5||v:1", "after": "Vic||v:1"},
        {"key": "Tipus", "before": "", "after": "ciutat||v:2"},
    ]


@pytest.mark.asyncio
async def test_bulk_moderation(client: AsyncClient, db, world, auth_headers, executor):
    editor, moderator = world
    for name in ("Vic", "Osona"):
        await _propose(client, auth_headers(editor.id), {"Nom": name})

    started = await client.post(
        "/moderation/bulk",
        json={"action": "reject", "object_type": "municipi"},
        headers=auth_headers(moderator.id),
    )
    assert started.status_code == 202
    job_id = started.json()["id"]
    assert started.json()["status"] == "running"

    executor.run_pending()

    polled = await client.get(f"/moderation/bulk/{job_id}", headers=auth_headers(moderator.id))
    data = polled.json()
    assert data["status"] == "done"
    assert (data["total"], data["processed"]) == (2, 2)

    bad = await client.post(
        "/moderation/bulk",
        json={"action": "publish", "object_type": "municipi"},
        headers=auth_headers(moderator.id),
    )
    assert bad.status_code == 400
    missing = await client.get("/moderation/bulk/nope", headers=auth_headers(moderator.id))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_my_permissions(client: AsyncClient, make, world, auth_headers):
    _, moderator = world
    admin = make.admin()

    mine = (await client.get("/me/permissions", headers=auth_headers(moderator.id))).json()
    assert mine == {"user_id": moderator.id, "is_admin": False, "permissions": ["territori.municipis.edit"]}

    theirs = (await client.get("/me/permissions", headers=auth_headers(admin.id))).json()
    assert theirs["is_admin"] is True
    assert "admin.moderacio.manage" in theirs["permissions"]


@pytest.mark.asyncio
async def test_revert_by_moderator_publishes(client: AsyncClient, db, make, world, auth_headers):
    editor, moderator = world
    reverter = make.user_with_grants(
        "reverter",
        [("wiki.revert", "municipi", 5, False), ("territori.municipis.edit", "municipi", 5, False)],
    )
    first = (await _propose(client, auth_headers(moderator.id), {"Nom": "Vic"})).json()["id"]
    await _propose(client, auth_headers(moderator.id), {"Nom": "Manlleu"})

    without_grant = await client.post(f"/wiki/changes/{first}/revert", headers=auth_headers(moderator.id))
    not_moderator = await client.post(f"/wiki/changes/{first}/revert", headers=auth_headers(editor.id))
    assert (without_grant.status_code, not_moderator.status_code) == (403, 403)

    response = await client.post(
        f"/wiki/changes/{first}/revert", json={"reason": "vandalisme"}, headers=auth_headers(reverter.id)
    )

    assert response.status_code == 201
    data = response.json()
    assert data["change_type"] == WikiChangeType.REVERT.value
    assert data["moderacio_estat"] == ModerationStatus.PUBLISHED.value
    assert json.loads(data["metadata"])["source_change_id"] == first
    db.expire_all()
    assert db.get(Municipi, 5).nom == "Vic"


@pytest.mark.asyncio
async def test_author_revert_is_queued(client: AsyncClient, db, make, world, auth_headers):
    _, moderator = world
    author = make.user_with_grants("author", [("wiki.revert", "global", None, False)])
    own = (await _propose(client, auth_headers(author.id), {"Nom": "Vic"})).json()["id"]
    await client.post(f"/wiki/changes/{own}/approve", headers=auth_headers(moderator.id))
    await _propose(client, auth_headers(moderator.id), {"Nom": "Manlleu"})

    response = await client.post(f"/wiki/changes/{own}/revert", headers=auth_headers(author.id))

    assert response.status_code == 201
    assert response.json()["moderacio_estat"] == ModerationStatus.PENDING.value
    assert response.json()["change_type"] == WikiChangeType.REVERT.value
    db.expire_all()
    assert db.get(Municipi, 5).nom == "Manlleu"


@pytest.mark.asyncio
async def test_revert_errors(client: AsyncClient, make, world, auth_headers):
    editor, _ = world
    reverter = make.user_with_grants(
        "reverter",
        [("wiki.revert", "municipi", 5, False), ("territori.municipis.edit", "municipi", 5, False)],
    )
    headers = auth_headers(reverter.id)
    pending = (await _propose(client, auth_headers(editor.id), {"Nom": "Vic"})).json()["id"]

    assert (await client.post(f"/wiki/changes/{pending}/revert", headers=headers)).status_code == 409
    assert (await client.post("/wiki/changes/404/revert", headers=headers)).status_code == 404
