"""Client model - the client aggregate with its documents and notes."""

import enum
import re
from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base
from models.common import Currency, Pagination, normalize_email, utcnow
from services.errors import ValidationError

CLIENT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,20}$")
NOTE_MAX_LENGTH = 2000


class ClientStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PROSPECT = "prospect"
    ARCHIVED = "archived"


class BusinessSize(str, enum.Enum):
    STARTUP = "startup"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ENTERPRISE = "enterprise"


class BillingCycle(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class DocumentCategory(str, enum.Enum):
    PROPOSAL = "proposal"
    CONTRACT = "contract"
    SOW = "sow"
    INVOICE = "invoice"
    REPORT = "report"
    OTHER = "other"


def normalize_note_content(content: str | None) -> str:
    """Trim note content and enforce the 1-2000 character bound."""
    content = (content or "").strip()
    if not content:
        raise ValidationError("Note content is required", field="content")
    if len(content) > NOTE_MAX_LENGTH:
        raise ValidationError(
            f"Note cannot be more than {NOTE_MAX_LENGTH} characters", field="content"
        )
    return content


class Client(Base):
    """Client ORM model - owns its documents and notes."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=Currency.USD.value)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    contact_info: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    primary_contact: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    business_info: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    billing: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClientStatus.ACTIVE.value, index=True
    )
    engagement_manager_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_by_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    metrics: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    documents: Mapped[list["ClientDocument"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClientDocument.uploaded_at",
    )
    notes: Mapped[list["ClientNote"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClientNote.created_at",
    )

    __mapper_args__ = {"version_id_col": row_version}
    __table_args__ = (
        {"comment": "Clients owned by an engagement manager"},
    )

    @property
    def document_count(self) -> int:
        return len(self.documents)

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()

    def add_document(
        self,
        *,
        document_id: UUID,
        storage_key: str,
        original_name: str,
        mimetype: str,
        size: int,
        uploaded_by_id: UUID,
        category: str = DocumentCategory.OTHER.value,
        description: str | None = None,
        now: datetime | None = None,
    ) -> "ClientDocument":
        document = ClientDocument(
            id=document_id,
            filename=storage_key.rsplit("/", 1)[-1],
            original_name=original_name,
            mimetype=mimetype,
            size=size,
            path=storage_key,
            uploaded_by_id=uploaded_by_id,
            uploaded_at=now or utcnow(),
            category=category,
            description=description or "",
        )
        self.documents.append(document)
        self.touch(now)
        return document

    def find_document(self, document_id: UUID) -> "ClientDocument | None":
        for document in self.documents:
            if document.id == document_id:
                return document
        return None

    def remove_document(self, document: "ClientDocument", now: datetime | None = None) -> None:
        self.documents.remove(document)
        self.touch(now)

    def add_note(self, content: str, author_id: UUID, now: datetime | None = None) -> "ClientNote":
        note = ClientNote(
            content=normalize_note_content(content),
            author_id=author_id,
            created_at=now or utcnow(),
        )
        self.notes.append(note)
        self.touch(now)
        return note


class ClientDocument(Base):
    """Document attached to a client; the bytes live in the blob store under ``path``."""

    __tablename__ = "client_documents"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mimetype: Mapped[str] = mapped_column(String(150), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    path: Mapped[str] = mapped_column(String(512), nullable=False)
    uploaded_by_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocumentCategory.OTHER.value
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    client: Mapped[Client] = relationship(back_populates="documents")


class ClientNote(Base):
    """Append-only note on a client."""

    __tablename__ = "client_notes"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(String(NOTE_MAX_LENGTH), nullable=False)
    author_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    client: Mapped[Client] = relationship(back_populates="notes")


# Pydantic schemas
class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    postal_code: str | None = None


class ContactInfo(BaseModel):
    email: EmailStr | None = None
    phone: str | None = None
    address: Address | None = None
    website: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        return normalize_email(value)


class PrimaryContact(BaseModel):
    name: str | None = None
    title: str | None = None
    email: EmailStr | None = None
    phone: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        return normalize_email(value)


class BusinessInfo(BaseModel):
    industry: str | None = None
    size: BusinessSize | None = None
    revenue: str | None = None
    employees: int | None = Field(default=None, ge=0)


class Billing(BaseModel):
    tax_id: str | None = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    payment_terms: int = Field(default=30, ge=0, le=365)
    discount: float = Field(default=0, ge=0, le=100)


class ClientMetrics(BaseModel):
    total_revenue: float = 0
    total_projects: int = 0
    average_project_value: float = 0
    last_engagement: datetime | None = None


def _normalize_code(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _strip(value):
    if isinstance(value, str):
        return value.strip()
    return value


class ClientBase(BaseModel):
    """Base client schema."""

    name: str = Field(min_length=1, max_length=200)
    code: str = Field(pattern=CLIENT_CODE_PATTERN.pattern)
    currency: Currency = Currency.USD
    description: str | None = Field(default=None, max_length=1000)
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    primary_contact: PrimaryContact = Field(default_factory=PrimaryContact)
    business_info: BusinessInfo = Field(default_factory=BusinessInfo)
    billing: Billing = Field(default_factory=Billing)
    status: ClientStatus = ClientStatus.ACTIVE
    tags: list[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return _normalize_code(value)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class ClientCreate(ClientBase):
    """Schema for creating a client.

    Note: engagement_manager_id defaults to the creator server-side.
    """

    engagement_manager_id: UUID | None = None


class ClientUpdate(BaseModel):
    """Schema for updating a client (only provided fields are applied)."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    code: str | None = Field(default=None, pattern=CLIENT_CODE_PATTERN.pattern)
    currency: Currency | None = None
    description: str | None = Field(default=None, max_length=1000)
    contact_info: ContactInfo | None = None
    primary_contact: PrimaryContact | None = None
    business_info: BusinessInfo | None = None
    billing: Billing | None = None
    status: ClientStatus | None = None
    tags: list[str] | None = None
    engagement_manager_id: UUID | None = None

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return _normalize_code(value)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class NoteCreate(BaseModel):
    """Schema for adding a note to a client."""

    content: str = Field(min_length=1, max_length=NOTE_MAX_LENGTH)

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value):
        return _strip(value)


class ClientDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    filename: str
    original_name: str
    mimetype: str
    size: int
    path: str
    uploaded_by_id: UUID
    uploaded_at: datetime
    category: DocumentCategory
    description: str


class ClientNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content: str
    author_id: UUID
    created_at: datetime


class ClientResponse(BaseModel):
    """Schema for client response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    code: str
    currency: Currency
    description: str | None
    contact_info: ContactInfo
    primary_contact: PrimaryContact
    business_info: BusinessInfo
    billing: Billing
    status: ClientStatus
    engagement_manager_id: UUID
    created_by_id: UUID
    tags: list[str]
    metrics: ClientMetrics
    documents: list[ClientDocumentResponse]
    notes: list[ClientNoteResponse]
    document_count: int
    created_at: datetime
    updated_at: datetime


class ClientListResponse(BaseModel):
    clients: list[ClientResponse]
    pagination: Pagination


class CurrencyCount(BaseModel):
    currency: Currency
    count: int


class ClientStats(BaseModel):
    total_clients: int = 0
    active_clients: int = 0
    prospects: int = 0
    total_revenue: float = 0
    total_documents: int = 0
    currency_stats: list[CurrencyCount] = Field(default_factory=list)


class DocumentUploadResponse(BaseModel):
    documents: list[ClientDocumentResponse]
    client: ClientResponse
