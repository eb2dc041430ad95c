"""SQLAlchemy ORM models and Pydantic schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

TicketCategory = Literal["refund", "shipping", "product", "billing", "general"]
TicketPriority = Literal["low", "medium", "high"]
TicketStatus = Literal["open", "resolved"]
TicketAIStatus = Literal["pending", "draft_ready", "human_needed"]
TicketMessageAuthor = Literal["customer", "agent", "system"]
NotificationType = Literal["ticket", "ai", "system", "team"]
NotificationPriority = Literal["normal", "high"]
AIRunStatus = Literal["queued", "running", "done", "error"]
AIUrgency = Literal["low", "medium", "high"]
AIPersona = Literal["professional", "friendly", "concise"]


# ── SQLAlchemy ORM ──────────────────────────────────────────────────────


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Profile(Base):
    """Maps an authenticated user to the organization they are working in."""

    __tablename__ = "profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    current_org_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("organizations.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ltv: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    last_ticket_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_customers_org_email"),
        CheckConstraint("orders >= 0", name="ck_customers_orders"),
        CheckConstraint("ltv >= 0", name="ck_customers_ltv"),
        Index("idx_customers_org_name", "org_id", "name", "id"),
        Index("idx_customers_org_updated", "org_id", "updated_at", "id"),
        Index("idx_customers_org_created", "org_id", "created_at", "id"),
        Index("idx_customers_org_ltv", "org_id", "ltv", "id"),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    ticket_number: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    excerpt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="open")
    ai_status: Mapped[str | None] = mapped_column(String(20))
    latest_run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    confidence: Mapped[float | None] = mapped_column(Float)
    sentiment: Mapped[float | None] = mapped_column(Float)
    draft_response: Mapped[str | None] = mapped_column(Text)
    draft_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("org_id", "ticket_number", name="uq_tickets_org_number"),
        Index("idx_tickets_org_updated", "org_id", "updated_at", "id"),
        Index("idx_tickets_org_created", "org_id", "created_at", "id"),
    )

    customer: Mapped[Customer] = relationship(lazy="raise")


class TicketMessage(Base):
    __tablename__ = "ticket_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    author_type: Mapped[str] = mapped_column(String(20), nullable=False, default="agent")
    author_name: Mapped[str | None] = mapped_column(String(120))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_ticket_messages_ticket_created", "org_id", "ticket_id", "created_at", "id"),)


class ResponseTemplate(Base):
    __tablename__ = "response_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_templates_org_updated", "org_id", "updated_at", "id"),
        Index("idx_templates_org_created", "org_id", "created_at", "id"),
        Index("idx_templates_org_title", "org_id", "title", "id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ticket_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("tickets.id", ondelete="SET NULL"))
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_org_created", "org_id", "created_at", "id"),)


class AISettings(Base):
    __tablename__ = "ai_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, unique=True)
    ai_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_reply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    learning_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    max_response_length: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    tone_value: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    selected_persona: Mapped[str] = mapped_column(String(20), nullable=False, default="professional")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AIRun(Base):
    __tablename__ = "ai_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    intent: Mapped[str | None] = mapped_column(String(100))
    urgency: Mapped[str | None] = mapped_column(String(10))
    confidence: Mapped[float | None] = mapped_column(Float)
    sentiment: Mapped[float | None] = mapped_column(Float)
    draft_response: Mapped[str | None] = mapped_column(Text)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ── Pydantic Schemas ────────────────────────────────────────────────────


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TicketCustomerDTO(CamelModel):
    id: str
    name: str
    email: str


class TicketDTO(CamelModel):
    id: str
    ticket_number: str
    subject: str
    excerpt: str
    content: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    ai_status: TicketAIStatus | None
    latest_run_id: str | None
    confidence: float | None
    sentiment: float | None
    draft_response: str | None
    customer: TicketCustomerDTO
    archived_at: str | None
    created_at: str
    updated_at: str


class CustomerDTO(CamelModel):
    id: str
    name: str
    email: str
    orders: int
    ltv: float
    last_ticket_at: str | None
    created_at: str
    updated_at: str


class TemplateDTO(CamelModel):
    id: str
    org_id: str
    title: str
    category: str
    content: str
    archived_at: str | None
    created_at: str
    updated_at: str


class NotificationDTO(CamelModel):
    id: str
    org_id: str
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    ticket_id: str | None
    read_at: str | None
    created_at: str


class TicketMessageDTO(CamelModel):
    id: str
    ticket_id: str
    author_type: TicketMessageAuthor
    author_name: str | None
    content: str
    created_at: str


class AISettingsDTO(CamelModel):
    id: str
    org_id: str
    ai_enabled: bool
    auto_reply: bool
    learning_mode: bool
    confidence_threshold: int
    max_response_length: int
    tone_value: int
    selected_persona: AIPersona
    created_at: str
    updated_at: str


class AIRunDTO(CamelModel):
    id: str
    ticket_id: str
    status: AIRunStatus
    intent: str | None
    urgency: AIUrgency | None
    confidence: float | None
    sentiment: float | None
    draft_response: str | None
    error: str | None
    created_at: str
    started_at: str | None
    finished_at: str | None


class AnalyticsRange(CamelModel):
    from_: str = Field(alias="from")
    to: str
    timezone: str


class AnalyticsSummary(CamelModel):
    total_tickets: int
    open_tickets: int
    resolved_tickets: int
    human_needed_tickets: int
    ai_resolution_rate: float | None
    avg_handle_time_seconds: int | None
    csat_score: float | None = None


class VolumeBucket(CamelModel):
    bucket_start: str
    tickets: int


class ResolutionSplit(CamelModel):
    ai_resolved: int
    human_resolved: int


class CategoryCount(CamelModel):
    category: TicketCategory
    count: int


class AnalyticsDTO(CamelModel):
    range: AnalyticsRange
    summary: AnalyticsSummary
    ticket_volume: list[VolumeBucket]
    resolution_split: ResolutionSplit
    categories: list[CategoryCount]


# ── Response envelopes ──


class TicketResponse(CamelModel):
    ticket: TicketDTO


class TicketRunResponse(CamelModel):
    ticket: TicketDTO
    run_id: str | None


class CustomerResponse(CamelModel):
    customer: CustomerDTO


class TemplateResponse(CamelModel):
    template: TemplateDTO


class NotificationResponse(CamelModel):
    notification: NotificationDTO


class TicketMessageResponse(CamelModel):
    message: TicketMessageDTO


class AISettingsResponse(CamelModel):
    settings: AISettingsDTO


class AnalyticsResponse(CamelModel):
    analytics: AnalyticsDTO


# ── Request bodies ──


class PartialUpdate(CamelModel):
    """Base for PATCH bodies.

    Only fields present in the request end up in ``model_fields_set``; an
    explicit ``null`` is kept apart from an absent field. Fields listed in
    ``not_nullable`` may be omitted but never set to ``null``.
    """

    not_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _check_fields(self):
        if not self.model_fields_set:
            raise ValueError("No fields to update.")
        for name in self.model_fields_set & self.not_nullable:
            if getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null.")
        return self


class NewCustomer(CamelModel):
    name: str = Field(min_length=2, max_length=120)
    email: EmailStr


class CreateTicketRequest(CamelModel):
    subject: str = Field(min_length=3, max_length=200)
    content: str = Field(min_length=1, max_length=20_000)
    category: TicketCategory
    priority: TicketPriority | None = None
    customer_id: uuid.UUID | None = None
    customer: NewCustomer | None = None
    run_ai: bool | None = Field(default=None, alias="runAI")

    @model_validator(mode="after")
    def _one_customer_source(self):
        if (self.customer_id is None) == (self.customer is None):
            raise ValueError("Provide either customerId or customer (name/email).")
        return self


class PatchTicketRequest(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"subject", "content", "category", "priority", "status"})

    subject: str | None = Field(default=None, min_length=3, max_length=200)
    content: str | None = Field(default=None, min_length=1, max_length=20_000)
    category: TicketCategory | None = None
    priority: TicketPriority | None = None
    status: TicketStatus | None = None
    draft_response: str | None = Field(default=None, max_length=20_000)


class TriggerAIRunRequest(CamelModel):
    force: bool = False


class CreateTicketMessageRequest(CamelModel):
    author_type: TicketMessageAuthor | None = None
    author_name: str | None = Field(default=None, min_length=1, max_length=120)
    content: str = Field(min_length=1, max_length=20_000)


class CreateCustomerRequest(NewCustomer):
    pass


class PatchCustomerRequest(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"name", "email", "orders", "ltv"})

    name: str | None = Field(default=None, min_length=2, max_length=120)
    email: EmailStr | None = None
    orders: int | None = Field(default=None, ge=0)
    ltv: float | None = Field(default=None, ge=0, le=9_999_999_999.99)


class CreateTemplateRequest(CamelModel):
    title: str = Field(min_length=2, max_length=120)
    category: str = Field(min_length=2, max_length=60)
    content: str = Field(min_length=1, max_length=20_000)


class PatchTemplateRequest(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"title", "category", "content"})

    title: str | None = Field(default=None, min_length=2, max_length=120)
    category: str | None = Field(default=None, min_length=2, max_length=60)
    content: str | None = Field(default=None, min_length=1, max_length=20_000)
    archived_at: datetime | None = None


class PatchAISettingsRequest(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset(
        {
            "ai_enabled",
            "auto_reply",
            "learning_mode",
            "confidence_threshold",
            "max_response_length",
            "tone_value",
            "selected_persona",
        }
    )

    ai_enabled: bool | None = None
    auto_reply: bool | None = None
    learning_mode: bool | None = None
    confidence_threshold: int | None = Field(default=None, ge=0, le=100)
    max_response_length: int | None = Field(default=None, ge=50, le=2000)
    tone_value: int | None = Field(default=None, ge=0, le=100)
    selected_persona: AIPersona | None = None
