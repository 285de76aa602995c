"""Unit tests for the client coordinators."""

import time
from datetime import date
from uuid import uuid4

import pytest

from models.client import ClientUpdate, DocumentCategory
from models.common import PageParams, SortOrder
from models.project import ProjectCreate
from services import clients_service, projects_service, storage
from services.errors import (
    AccessDeniedError,
    ClientNotFoundError,
    DocumentNotFoundError,
    DuplicateKeyError,
    ManagerNotFoundError,
    OperationTimeoutError,
    UnsupportedTypeError,
    UpstreamUnavailableError,
    ValidationError,
)
from services.upload_gate import FileMeta


def pdf(name: str, content: bytes = b"%PDF-1.4 test") -> FileMeta:
    return FileMeta(original_name=name, mimetype="application/pdf", content=content)


def stored_files(upload_dir):
    return [path for path in upload_dir.rglob("*") if path.is_file()]


class TestCreateClient:
    @pytest.mark.asyncio
    async def test_create_defaults_owner_to_caller(self, db_session, em, client_payload_factory):
        client = await clients_service.create_client(
            db_session, principal=em, payload=client_payload_factory(code="globex")
        )

        assert client.code == "GLOBEX"
        assert client.engagement_manager_id == em.id
        assert client.created_by_id == em.id
        assert client.document_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_code_is_case_insensitive(self, db_session, em, acme, client_payload_factory):
        with pytest.raises(DuplicateKeyError):
            await clients_service.create_client(
                db_session, principal=em, payload=client_payload_factory(code="acme01")
            )

    @pytest.mark.asyncio
    async def test_resource_manager_cannot_create(self, db_session, rm, client_payload_factory):
        with pytest.raises(AccessDeniedError):
            await clients_service.create_client(
                db_session, principal=rm, payload=client_payload_factory()
            )

    @pytest.mark.asyncio
    async def test_em_cannot_assign_another_manager(self, db_session, em, other_em, client_payload_factory):
        payload = client_payload_factory(engagement_manager_id=other_em.id)
        with pytest.raises(AccessDeniedError):
            await clients_service.create_client(db_session, principal=em, payload=payload)

    @pytest.mark.asyncio
    async def test_admin_assigns_manager(self, db_session, admin, other_em, client_payload_factory):
        client = await clients_service.create_client(
            db_session,
            principal=admin,
            payload=client_payload_factory(engagement_manager_id=other_em.id),
        )
        assert client.engagement_manager_id == other_em.id

        with pytest.raises(ManagerNotFoundError):
            await clients_service.create_client(
                db_session,
                principal=admin,
                payload=client_payload_factory(code="NOPE01", engagement_manager_id=uuid4()),
            )


class TestReadClients:
    @pytest.mark.asyncio
    async def test_list_is_scoped_and_paginated(self, db_session, em, other_em, client_payload_factory):
        for code in ("AAA01", "BBB01", "CCC01"):
            await clients_service.create_client(
                db_session, principal=em, payload=client_payload_factory(code=code, name=f"Client {code}")
            )
        await clients_service.create_client(
            db_session, principal=other_em, payload=client_payload_factory(code="ZZZ01")
        )

        clients, pagination = await clients_service.list_clients(
            db_session,
            principal=em,
            page=PageParams(page=1, limit=2, sort_by="code", sort_order=SortOrder.ASC),
        )

        assert [c.code for c in clients] == ["AAA01", "BBB01"]
        assert pagination.total_count == 3
        assert pagination.total_pages == 2
        assert pagination.has_next is True
        assert pagination.has_prev is False

    @pytest.mark.asyncio
    async def test_list_filters_by_search(self, db_session, em, acme, client_payload_factory):
        await clients_service.create_client(
            db_session, principal=em, payload=client_payload_factory(code="GLOBEX", name="Globex Corp")
        )

        clients, pagination = await clients_service.list_clients(
            db_session, principal=em, page=PageParams(), search="globex"
        )
        assert [c.code for c in clients] == ["GLOBEX"]
        assert pagination.total_count == 1

    @pytest.mark.asyncio
    async def test_search_wildcards_match_literally(self, db_session, em, acme, client_payload_factory):
        await clients_service.create_client(
            db_session, principal=em, payload=client_payload_factory(code="PURE01", name="100% Pure")
        )

        percent, _ = await clients_service.list_clients(
            db_session, principal=em, page=PageParams(), search="%"
        )
        underscore, pagination = await clients_service.list_clients(
            db_session, principal=em, page=PageParams(), search="_"
        )

        assert [c.code for c in percent] == ["PURE01"]
        assert underscore == []
        assert pagination.total_count == 0

    @pytest.mark.asyncio
    async def test_get_outside_scope_is_not_found(self, db_session, em, other_em, admin, acme):
        with pytest.raises(ClientNotFoundError):
            await clients_service.get_client(db_session, principal=other_em, client_id=acme)

        client = await clients_service.get_client(db_session, principal=admin, client_id=acme)
        assert client.id == acme

    @pytest.mark.asyncio
    async def test_resource_manager_cannot_read_clients(self, db_session, rm, acme):
        with pytest.raises(AccessDeniedError):
            await clients_service.get_client(db_session, principal=rm, client_id=acme)


class TestUpdateClient:
    @pytest.mark.asyncio
    async def test_partial_update(self, db_session, em, acme):
        client = await clients_service.update_client(
            db_session,
            principal=em,
            client_id=acme,
            payload=ClientUpdate(name="  Acme Industries ", status="prospect"),
        )

        assert client.name == "Acme Industries"
        assert client.status == "prospect"
        assert client.currency == "USD"

    @pytest.mark.asyncio
    async def test_code_change_to_taken_code(self, db_session, em, acme, client_payload_factory):
        await clients_service.create_client(
            db_session, principal=em, payload=client_payload_factory(code="GLOBEX")
        )
        with pytest.raises(DuplicateKeyError):
            await clients_service.update_client(
                db_session, principal=em, client_id=acme, payload=ClientUpdate(code="globex")
            )

    @pytest.mark.asyncio
    async def test_null_required_field_rejected(self, db_session, em, acme):
        with pytest.raises(ValidationError):
            await clients_service.update_client(
                db_session, principal=em, client_id=acme, payload=ClientUpdate(name=None)
            )

    @pytest.mark.asyncio
    async def test_other_em_update_is_not_found(self, db_session, other_em, acme):
        with pytest.raises(ClientNotFoundError):
            await clients_service.update_client(
                db_session, principal=other_em, client_id=acme, payload=ClientUpdate(name="Hijack")
            )


class TestDocuments:
    @pytest.mark.asyncio
    async def test_upload_read_and_delete(self, db_session, em, acme, upload_dir):
        client, documents = await clients_service.upload_documents(
            db_session,
            principal=em,
            client_id=acme,
            files=[pdf("sow.pdf", b"statement of work")],
            category=DocumentCategory.SOW,
            description="Signed SOW",
        )

        assert client.document_count == 1
        document = documents[0]
        assert document.category == "sow"
        assert document.original_name == "sow.pdf"
        assert len(stored_files(upload_dir)) == 1

        found, stream = await clients_service.read_document(
            db_session, principal=em, client_id=acme, document_id=document.id
        )
        assert found.id == document.id
        assert b"".join(stream) == b"statement of work"

        client = await clients_service.delete_document(
            db_session, principal=em, client_id=acme, document_id=document.id
        )
        assert client.document_count == 0
        assert stored_files(upload_dir) == []

    @pytest.mark.asyncio
    async def test_rejected_batch_stores_nothing(self, db_session, em, acme, upload_dir):
        files = [
            pdf("a.pdf"),
            pdf("b.pdf"),
            FileMeta(original_name="tool.exe", mimetype="application/x-msdownload", content=b"MZ"),
        ]
        with pytest.raises(UnsupportedTypeError):
            await clients_service.upload_documents(db_session, principal=em, client_id=acme, files=files)

        client = await clients_service.get_client(db_session, principal=em, client_id=acme)
        assert client.document_count == 0
        assert stored_files(upload_dir) == []

    @pytest.mark.asyncio
    async def test_blob_failure_mid_batch_removes_written_blobs(
        self, db_session, em, acme, upload_dir, monkeypatch
    ):
        real_save = storage.save_blob
        calls = []

        def flaky_save(content, content_type, storage_key):
            calls.append(storage_key)
            if len(calls) == 3:
                raise OSError("disk full")
            return real_save(content, content_type, storage_key)

        monkeypatch.setattr(storage, "save_blob", flaky_save)

        with pytest.raises(UpstreamUnavailableError):
            await clients_service.upload_documents(
                db_session,
                principal=em,
                client_id=acme,
                files=[pdf("a.pdf"), pdf("b.pdf"), pdf("c.pdf")],
            )

        assert len(calls) == 3
        assert stored_files(upload_dir) == []
        client = await clients_service.get_client(db_session, principal=em, client_id=acme)
        assert client.document_count == 0

    @pytest.mark.asyncio
    async def test_timed_out_upload_leaves_no_blobs(self, db_session, em, acme, upload_dir, monkeypatch):
        real_save = storage.save_blob

        def slow_save(content, content_type, storage_key):
            time.sleep(0.3)
            return real_save(content, content_type, storage_key)

        monkeypatch.setattr(storage, "save_blob", slow_save)

        with pytest.raises(OperationTimeoutError):
            await clients_service.upload_documents(
                db_session, principal=em, client_id=acme, files=[pdf("slow.pdf")], timeout=0.1
            )

        assert stored_files(upload_dir) == []
        client = await clients_service.get_client(db_session, principal=em, client_id=acme)
        assert client.document_count == 0

    @pytest.mark.asyncio
    async def test_delete_missing_document(self, db_session, em, acme):
        with pytest.raises(DocumentNotFoundError):
            await clients_service.delete_document(
                db_session, principal=em, client_id=acme, document_id=uuid4()
            )

    @pytest.mark.asyncio
    async def test_long_description_rejected(self, db_session, em, acme):
        with pytest.raises(ValidationError):
            await clients_service.upload_documents(
                db_session, principal=em, client_id=acme, files=[pdf("a.pdf")], description="x" * 501
            )


class TestDeleteClient:
    @pytest.mark.asyncio
    async def test_delete_removes_documents_and_blobs(self, db_session, em, acme, upload_dir):
        _, documents = await clients_service.upload_documents(
            db_session,
            principal=em,
            client_id=acme,
            files=[pdf("one.pdf"), pdf("two.pdf"), pdf("three.pdf")],
        )
        assert len(stored_files(upload_dir)) == 3

        await clients_service.delete_client(db_session, principal=em, client_id=acme)

        assert stored_files(upload_dir) == []
        with pytest.raises(ClientNotFoundError):
            await clients_service.get_client(db_session, principal=em, client_id=acme)
        with pytest.raises(ClientNotFoundError):
            await clients_service.read_document(
                db_session, principal=em, client_id=acme, document_id=documents[0].id
            )

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_blob(self, db_session, em, acme, upload_dir):
        _, documents = await clients_service.upload_documents(
            db_session, principal=em, client_id=acme, files=[pdf("one.pdf")]
        )
        (upload_dir / documents[0].path).unlink()

        await clients_service.delete_client(db_session, principal=em, client_id=acme)

        with pytest.raises(ClientNotFoundError):
            await clients_service.get_client(db_session, principal=em, client_id=acme)

    @pytest.mark.asyncio
    async def test_delete_with_projects_rejected(self, db_session, em, pm, acme):
        await projects_service.create_project(
            db_session,
            principal=em,
            payload=ProjectCreate(
                name="Blocker",
                client_id=acme,
                project_manager_id=pm.id,
                start_date=date(2024, 1, 1),
                end_date=date(2024, 2, 1),
            ),
        )

        with pytest.raises(ValidationError) as exc_info:
            await clients_service.delete_client(db_session, principal=em, client_id=acme)
        assert exc_info.value.errors[0]["field"] == "projects"


class TestNotesAndStats:
    @pytest.mark.asyncio
    async def test_add_note(self, db_session, em, acme):
        client = await clients_service.add_client_note(
            db_session, principal=em, client_id=acme, content="  Called the CFO  "
        )
        assert [note.content for note in client.notes] == ["Called the CFO"]
        assert client.notes[0].author_id == em.id

    @pytest.mark.asyncio
    async def test_blank_note_rejected(self, db_session, em, acme):
        with pytest.raises(ValidationError):
            await clients_service.add_client_note(db_session, principal=em, client_id=acme, content="   ")

    @pytest.mark.asyncio
    async def test_stats_are_scoped(self, db_session, em, other_em, admin, acme, client_payload_factory):
        await clients_service.create_client(
            db_session,
            principal=other_em,
            payload=client_payload_factory(code="EURO01", currency="EUR", status="prospect"),
        )

        mine = await clients_service.client_stats(db_session, principal=em)
        everything = await clients_service.client_stats(db_session, principal=admin)

        assert mine["total_clients"] == 1
        assert mine["active_clients"] == 1
        assert everything["total_clients"] == 2
        assert everything["prospects"] == 1
        assert {row["currency"] for row in everything["currency_stats"]} == {"USD", "EUR"}
