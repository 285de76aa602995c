"""Service layer for Client business logic.

Each coordinator follows the same order: role gate, scoped load (the scope is
part of the query), instance check on that same object, aggregate mutation,
version-checked commit. The whole cycle runs inside ``run_unit`` so it is
bounded by a timeout and re-run on an optimistic-version conflict.
"""

import asyncio
import logging
from collections.abc import Iterator
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from auth.principal import Principal, Role
from models.client import (
    Client,
    ClientCreate,
    ClientDocument,
    ClientUpdate,
    DocumentCategory,
)
from models.common import PageParams, Pagination
from repos import clients_repo, users_repo
from services import policy, storage
from services.concurrency import run_unit
from services.errors import (
    AccessDeniedError,
    ClientNotFoundError,
    DocumentNotFoundError,
    DuplicateKeyError,
    ManagerNotFoundError,
    ValidationError,
)
from services.policy import Action, ResourceKind
from services.upload_gate import FileMeta, UploadConstraints, validate

logger = logging.getLogger(__name__)

DUPLICATE_CODE_MESSAGE = "Client code already exists"

# Nested sections stored as JSON documents on the client row
JSON_SECTIONS = ("contact_info", "primary_contact", "business_info", "billing")


async def _load_client(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    kind: ResourceKind = ResourceKind.CLIENT,
) -> Client:
    client = await clients_repo.get_by_id(
        session,
        client_id=client_id,
        scope=policy.scope_filter(principal, kind),
    )
    if not client:
        raise ClientNotFoundError("Client not found")
    return client


async def _resolve_engagement_manager(
    session: AsyncSession,
    *,
    principal: Principal,
    requested_id: UUID | None,
) -> UUID | None:
    """Engagement managers may only assign themselves; admins may pick any user."""
    if requested_id is None or requested_id == principal.id:
        return requested_id
    if principal.role != Role.ADMIN:
        raise AccessDeniedError("Only an admin can assign a client to another engagement manager")
    if not await users_repo.exists(session, user_id=requested_id):
        raise ManagerNotFoundError("Engagement manager not found")
    return requested_id


async def _ensure_code_available(
    session: AsyncSession,
    *,
    code: str,
    client_id: UUID | None = None,
) -> None:
    existing = await clients_repo.get_by_code(session, code=code)
    if existing and existing.id != client_id:
        raise DuplicateKeyError(DUPLICATE_CODE_MESSAGE)


async def create_client(
    session: AsyncSession,
    *,
    principal: Principal,
    payload: ClientCreate,
    timeout: float | None = None,
) -> Client:
    """
    Create a new client owned by an engagement manager.

    Args:
        session: Database session
        principal: Authenticated caller
        payload: Client creation data (code already upper-cased)
        timeout: Optional bound in seconds

    Returns:
        Created client

    Raises:
        AccessDeniedError: Role may not create clients, or EM assigns another user
        ManagerNotFoundError: Admin assigned a user that does not exist
        DuplicateKeyError: Code already in use
    """
    policy.require(principal, ResourceKind.CLIENT, Action.CREATE)

    async def operation() -> Client:
        manager_id = await _resolve_engagement_manager(
            session, principal=principal, requested_id=payload.engagement_manager_id
        )
        await _ensure_code_available(session, code=payload.code)

        data = payload.model_dump(mode="json", exclude={"engagement_manager_id"})
        client = Client(
            **data,
            id=uuid4(),
            engagement_manager_id=manager_id or principal.id,
            created_by_id=principal.id,
            metrics={},
            documents=[],
            notes=[],
        )
        await clients_repo.create(session, client)
        await session.commit()
        logger.info("Client %s (%s) created by %s", client.id, client.code, principal.id)
        return client

    return await run_unit(
        session,
        operation,
        name="create_client",
        timeout=timeout,
        duplicate_message=DUPLICATE_CODE_MESSAGE,
    )


async def list_clients(
    session: AsyncSession,
    *,
    principal: Principal,
    page: PageParams,
    search: str | None = None,
    status: str | None = None,
    currency: str | None = None,
    timeout: float | None = None,
) -> tuple[list[Client], Pagination]:
    """
    List clients visible to the caller, one page at a time.

    Returns:
        Tuple of (clients, pagination)
    """
    policy.require(principal, ResourceKind.CLIENT, Action.LIST)
    scope = policy.scope_filter(principal, ResourceKind.CLIENT)
    filters = {"search": search, "status": status, "currency": currency}

    async def operation():
        total = await clients_repo.count(session, scope=scope, **filters)
        clients = await clients_repo.list(
            session,
            scope=scope,
            sort_by=page.sort_by,
            sort_order=page.sort_order,
            skip=page.skip,
            limit=page.limit,
            **filters,
        )
        return clients, Pagination.build(page=page.page, limit=page.limit, total_count=total)

    return await run_unit(session, operation, name="list_clients", timeout=timeout)


async def get_client(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    timeout: float | None = None,
) -> Client:
    """
    Get a client by ID.

    Raises:
        AccessDeniedError: Role may not read clients
        ClientNotFoundError: Client missing or outside the caller's scope
    """
    policy.require(principal, ResourceKind.CLIENT, Action.READ)

    async def operation() -> Client:
        client = await _load_client(session, principal=principal, client_id=client_id)
        policy.require(principal, ResourceKind.CLIENT, Action.READ, client)
        return client

    return await run_unit(session, operation, name="get_client", timeout=timeout)


async def update_client(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    payload: ClientUpdate,
    timeout: float | None = None,
) -> Client:
    """
    Update an existing client (only provided fields are applied).

    Raises:
        ClientNotFoundError: Client missing or outside the caller's scope
        DuplicateKeyError: New code already in use
        AccessDeniedError: EM tried to hand the client to someone else
    """
    policy.require(principal, ResourceKind.CLIENT, Action.UPDATE)
    changes = payload.model_dump(mode="json", exclude_unset=True)

    async def operation() -> Client:
        client = await _load_client(session, principal=principal, client_id=client_id)
        policy.require(principal, ResourceKind.CLIENT, Action.UPDATE, client)

        if "engagement_manager_id" in changes:
            if payload.engagement_manager_id is None:
                raise ValidationError("Engagement manager is required", field="engagement_manager_id")
            await _resolve_engagement_manager(
                session, principal=principal, requested_id=payload.engagement_manager_id
            )
            client.engagement_manager_id = payload.engagement_manager_id

        if changes.get("code") and changes["code"] != client.code:
            await _ensure_code_available(session, code=changes["code"], client_id=client.id)

        for field, value in changes.items():
            if field == "engagement_manager_id":
                continue
            if value is None and field in ("name", "code", "currency", "status", "tags", *JSON_SECTIONS):
                raise ValidationError(f"{field} cannot be null", field=field)
            setattr(client, field, value)

        client.touch()
        await session.commit()
        return client

    return await run_unit(
        session,
        operation,
        name="update_client",
        timeout=timeout,
        duplicate_message=DUPLICATE_CODE_MESSAGE,
    )


async def _delete_blobs_best_effort(paths: list[str], *, client_id: UUID) -> None:
    for path in paths:
        try:
            removed = await asyncio.to_thread(storage.delete_blob, path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to delete blob %s for client %s: %s", path, client_id, e)
            continue
        if not removed:
            logger.info("Blob %s for client %s was already absent", path, client_id)


async def delete_client(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    timeout: float | None = None,
) -> None:
    """
    Delete a client together with its documents and notes.

    The row delete is flushed first so a concurrent modification aborts
    before any blob is touched. Blob cleanup is best-effort: a missing or
    undeletable blob is logged and never blocks the delete.

    Raises:
        ClientNotFoundError: Client missing or outside the caller's scope
        ValidationError: Projects still reference the client
    """
    policy.require(principal, ResourceKind.CLIENT, Action.DELETE)

    async def operation() -> None:
        client = await _load_client(session, principal=principal, client_id=client_id)
        policy.require(principal, ResourceKind.CLIENT, Action.DELETE, client)

        if await clients_repo.has_projects(session, client_id=client.id):
            raise ValidationError(
                "Cannot delete a client that still has projects", field="projects"
            )

        paths = [document.path for document in client.documents]
        await clients_repo.delete(session, client)
        await _delete_blobs_best_effort(paths, client_id=client.id)
        await session.commit()
        logger.info("Client %s deleted by %s (%d documents)", client_id, principal.id, len(paths))

    await run_unit(session, operation, name="delete_client", timeout=timeout)


def _cleanup_written(paths: list[str], *, client_id: UUID) -> None:
    # Runs on the error path, possibly during cancellation, so stays synchronous
    for path in paths:
        try:
            storage.delete_blob(path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to clean up blob %s for client %s: %s", path, client_id, e)
    if paths:
        logger.info("Removed %d blob(s) of an aborted upload for client %s", len(paths), client_id)


async def upload_documents(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    files: list[FileMeta],
    category: DocumentCategory = DocumentCategory.OTHER,
    description: str | None = None,
    constraints: UploadConstraints | None = None,
    timeout: float | None = None,
) -> tuple[Client, list[ClientDocument]]:
    """
    Attach a batch of buffered files to a client, all or nothing.

    The batch is validated before anything is loaded or written. The blobs
    are written after the aggregate accepted the documents and the version
    check passed; any failure after the first write removes every blob of the
    batch.

    Returns:
        Tuple of (client, new documents)

    Raises:
        TooManyFilesError, FileTooLargeError, UnsupportedTypeError: Batch rejected
        ClientNotFoundError: Client missing or outside the caller's scope
    """
    policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.CREATE)
    accepted = validate(files, constraints or UploadConstraints.from_settings())
    if description is not None and len(description) > 500:
        raise ValidationError("Description cannot be more than 500 characters", field="description")

    async def operation() -> tuple[Client, list[ClientDocument]]:
        client = await _load_client(
            session, principal=principal, client_id=client_id, kind=ResourceKind.CLIENT_DOCUMENT
        )
        policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.CREATE, client)

        documents = [
            client.add_document(
                document_id=uuid4(),
                storage_key=storage.generate_storage_key(client.id, meta.original_name),
                original_name=meta.original_name,
                mimetype=meta.mimetype,
                size=meta.size,
                uploaded_by_id=principal.id,
                category=DocumentCategory(category).value,
                description=description,
            )
            for meta in accepted
        ]
        await session.flush()

        # Paths are recorded before their write starts so an interrupted write is removed too
        written: list[str] = []
        in_flight: asyncio.Task | None = None
        try:
            for document, meta in zip(documents, accepted):
                written.append(document.path)
                in_flight = asyncio.ensure_future(
                    asyncio.to_thread(storage.save_blob, meta.content, meta.mimetype, document.path)
                )
                # Shielded so a cancelled upload can still wait for the worker thread
                await asyncio.shield(in_flight)
            await session.commit()
        except BaseException:
            if in_flight is not None and not in_flight.done():
                await asyncio.wait({in_flight})
                if in_flight.exception() is not None:
                    logger.warning("Interrupted blob write failed: %s", in_flight.exception())
            _cleanup_written(written, client_id=client.id)
            raise

        logger.info("Uploaded %d document(s) to client %s", len(documents), client.id)
        return client, documents

    return await run_unit(session, operation, name="upload_documents", timeout=timeout)


async def read_document(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    document_id: UUID,
    timeout: float | None = None,
) -> tuple[ClientDocument, Iterator[bytes]]:
    """
    Open a client document for download.

    Raises:
        ClientNotFoundError: Client missing or outside the caller's scope
        DocumentNotFoundError: Document or its blob is missing
    """
    policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.READ)

    async def operation():
        client = await _load_client(
            session, principal=principal, client_id=client_id, kind=ResourceKind.CLIENT_DOCUMENT
        )
        policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.READ, client)
        document = client.find_document(document_id)
        if not document:
            raise DocumentNotFoundError("Document not found")
        stream = await asyncio.to_thread(storage.read_blob, document.path)
        return document, stream

    return await run_unit(session, operation, name="read_document", timeout=timeout)


async def delete_document(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    document_id: UUID,
    timeout: float | None = None,
) -> Client:
    """
    Remove a document: blob first, then the sub-document.

    A failure in between leaves the record pointing at a missing blob, which
    a retry then cleans up (a missing blob is not an error).

    Raises:
        ClientNotFoundError: Client missing or outside the caller's scope
        DocumentNotFoundError: Document not on this client
    """
    policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.DELETE)

    async def operation() -> Client:
        client = await _load_client(
            session, principal=principal, client_id=client_id, kind=ResourceKind.CLIENT_DOCUMENT
        )
        policy.require(principal, ResourceKind.CLIENT_DOCUMENT, Action.DELETE, client)
        document = client.find_document(document_id)
        if not document:
            raise DocumentNotFoundError("Document not found")

        removed = await asyncio.to_thread(storage.delete_blob, document.path)
        if not removed:
            logger.info("Blob %s was already absent", document.path)
        client.remove_document(document)
        await session.commit()
        return client

    return await run_unit(session, operation, name="delete_document", timeout=timeout)


async def add_client_note(
    session: AsyncSession,
    *,
    principal: Principal,
    client_id: UUID,
    content: str,
    timeout: float | None = None,
) -> Client:
    """
    Append a note to a client.

    Raises:
        ValidationError: Content empty after trimming or too long
        ClientNotFoundError: Client missing or outside the caller's scope
    """
    policy.require(principal, ResourceKind.CLIENT_NOTE, Action.CREATE)

    async def operation() -> Client:
        client = await _load_client(
            session, principal=principal, client_id=client_id, kind=ResourceKind.CLIENT_NOTE
        )
        policy.require(principal, ResourceKind.CLIENT_NOTE, Action.CREATE, client)
        client.add_note(content, principal.id)
        await session.commit()
        return client

    return await run_unit(session, operation, name="add_client_note", timeout=timeout)


async def client_stats(
    session: AsyncSession,
    *,
    principal: Principal,
    timeout: float | None = None,
) -> dict:
    """Aggregate statistics over the clients visible to the caller."""
    policy.require(principal, ResourceKind.CLIENT, Action.LIST)
    scope = policy.scope_filter(principal, ResourceKind.CLIENT)

    async def operation() -> dict:
        return await clients_repo.stats(session, scope=scope)

    return await run_unit(session, operation, name="client_stats", timeout=timeout)
