"""
Client isolation tests through the HTTP API.

An engagement manager must never see another manager's clients: list
queries leave them out and direct reads return 404, exactly as for a client
that does not exist. Resource managers have no client access at all.
"""

from uuid import uuid4

import pytest

BASE = "/api/v1/clients"


def client_body(code="ACME01", **overrides):
    body = {"name": "Acme", "code": code, "currency": "USD"}
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_foreign_client_is_indistinguishable_from_missing(api_client, auth_headers, em, other_em):
    created = await api_client.post(BASE, json=client_body(), headers=auth_headers(em))
    assert created.status_code == 201
    client_id = created.json()["id"]

    foreign = await api_client.get(f"{BASE}/{client_id}", headers=auth_headers(other_em))
    missing = await api_client.get(f"{BASE}/{uuid4()}", headers=auth_headers(other_em))

    assert foreign.status_code == 404
    assert missing.status_code == 404
    assert foreign.json() == missing.json()
    assert foreign.json()["detail"]["kind"] == "not_found"


@pytest.mark.asyncio
async def test_list_only_returns_own_clients(api_client, auth_headers, em, other_em, admin):
    await api_client.post(BASE, json=client_body("ACME01"), headers=auth_headers(em))
    await api_client.post(BASE, json=client_body("OTHER1"), headers=auth_headers(other_em))

    mine = await api_client.get(BASE, headers=auth_headers(em))
    assert mine.status_code == 200
    assert [c["code"] for c in mine.json()["clients"]] == ["ACME01"]
    assert mine.json()["pagination"]["total_count"] == 1

    everything = await api_client.get(BASE, headers=auth_headers(admin))
    assert everything.json()["pagination"]["total_count"] == 2


@pytest.mark.asyncio
async def test_foreign_writes_return_404(api_client, auth_headers, em, other_em):
    created = await api_client.post(BASE, json=client_body(), headers=auth_headers(em))
    client_id = created.json()["id"]
    headers = auth_headers(other_em)

    update = await api_client.put(f"{BASE}/{client_id}", json={"name": "Mine now"}, headers=headers)
    note = await api_client.post(f"{BASE}/{client_id}/notes", json={"content": "hi"}, headers=headers)
    delete = await api_client.delete(f"{BASE}/{client_id}", headers=headers)

    assert update.status_code == 404
    assert note.status_code == 404
    assert delete.status_code == 404

    still_there = await api_client.get(f"{BASE}/{client_id}", headers=auth_headers(em))
    assert still_there.json()["name"] == "Acme"


@pytest.mark.asyncio
async def test_resource_manager_is_denied(api_client, auth_headers, rm, acme):
    listing = await api_client.get(BASE, headers=auth_headers(rm))
    read = await api_client.get(f"{BASE}/{acme}", headers=auth_headers(rm))

    assert listing.status_code == 403
    assert read.status_code == 403
    assert read.json()["detail"]["kind"] == "access_denied"


@pytest.mark.asyncio
async def test_duplicate_code_conflict(api_client, auth_headers, em, acme):
    response = await api_client.post(BASE, json=client_body("acme01"), headers=auth_headers(em))
    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "duplicate_key"


@pytest.mark.asyncio
async def test_invalid_body_is_400(api_client, auth_headers, em):
    response = await api_client.post(BASE, json=client_body("a!"), headers=auth_headers(em))
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["kind"] == "validation_error"
    assert any(error["field"] == "code" for error in detail["errors"])


@pytest.mark.asyncio
async def test_pagination_limit_is_capped(api_client, auth_headers, em, acme):
    response = await api_client.get(f"{BASE}?limit=1000&page=1", headers=auth_headers(em))
    assert response.status_code == 200
    assert response.json()["pagination"]["current_page"] == 1


@pytest.mark.asyncio
async def test_page_beyond_cap_is_400(api_client, auth_headers, em, acme):
    response = await api_client.get(f"{BASE}?page={10**12}", headers=auth_headers(em))
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["kind"] == "validation_error"
    assert detail["errors"][0]["field"] == "query.page"


@pytest.mark.asyncio
async def test_unauthenticated_request_rejected(api_client):
    response = await api_client.get(BASE)
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_documents_upload_download_and_rejection(api_client, auth_headers, em, other_em, acme, upload_dir):
    headers = auth_headers(em)
    files = [
        ("files", ("contract.pdf", b"%PDF contract", "application/pdf")),
        ("files", ("notes.txt", b"plain notes", "text/plain")),
    ]
    uploaded = await api_client.post(
        f"{BASE}/{acme}/documents", files=files, data={"category": "contract"}, headers=headers
    )
    assert uploaded.status_code == 201
    documents = uploaded.json()["documents"]
    assert [d["original_name"] for d in documents] == ["contract.pdf", "notes.txt"]
    assert uploaded.json()["client"]["document_count"] == 2

    download = await api_client.get(
        f"{BASE}/{acme}/documents/{documents[0]['id']}/download", headers=headers
    )
    assert download.status_code == 200
    assert download.content == b"%PDF contract"
    assert "contract.pdf" in download.headers["content-disposition"]

    foreign = await api_client.get(
        f"{BASE}/{acme}/documents/{documents[0]['id']}/download", headers=auth_headers(other_em)
    )
    assert foreign.status_code == 404

    rejected = await api_client.post(
        f"{BASE}/{acme}/documents",
        files=[
            ("files", ("ok.pdf", b"%PDF", "application/pdf")),
            ("files", ("bad.exe", b"MZ", "application/x-msdownload")),
        ],
        headers=headers,
    )
    assert rejected.status_code == 400
    assert rejected.json()["detail"]["kind"] == "unsupported_type"

    client = await api_client.get(f"{BASE}/{acme}", headers=headers)
    assert client.json()["document_count"] == 2
    assert len([p for p in upload_dir.rglob("*") if p.is_file()]) == 2
