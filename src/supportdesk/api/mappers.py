"""Row <-> wire mapping for every resource.

``map_*_row`` turns a persisted row into its DTO. ``*_updates`` turns a
validated PATCH body into a column-update map holding only the fields the
client actually sent, so an explicit ``null`` is kept apart from an absent
field.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from supportdesk.common.models import (
    AIRun,
    AIRunDTO,
    AISettings,
    AISettingsDTO,
    Customer,
    CustomerDTO,
    Notification,
    NotificationDTO,
    PatchAISettingsRequest,
    PatchCustomerRequest,
    PatchTemplateRequest,
    PatchTicketRequest,
    ResponseTemplate,
    TemplateDTO,
    Ticket,
    TicketCustomerDTO,
    TicketDTO,
    TicketMessage,
    TicketMessageDTO,
)
from supportdesk.common.utils import make_excerpt, to_iso, utc_now

CENTS = Decimal("0.01")


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)


def _float_or_none(value: Any) -> float | None:
    return None if value is None else float(value)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def map_ticket_row(row: Ticket) -> TicketDTO:
    customer = row.customer
    return TicketDTO(
        id=str(row.id),
        ticket_number=row.ticket_number,
        subject=row.subject,
        excerpt=row.excerpt,
        content=row.content,
        category=row.category,
        priority=row.priority,
        status=row.status,
        ai_status=row.ai_status,
        latest_run_id=_str_or_none(row.latest_run_id),
        confidence=_float_or_none(row.confidence),
        sentiment=_float_or_none(row.sentiment),
        draft_response=row.draft_response,
        customer=TicketCustomerDTO(id=str(customer.id), name=customer.name, email=customer.email),
        archived_at=to_iso(row.archived_at),
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def map_customer_row(row: Customer) -> CustomerDTO:
    return CustomerDTO(
        id=str(row.id),
        name=row.name,
        email=row.email,
        orders=row.orders,
        ltv=0.0 if row.ltv is None else float(row.ltv),
        last_ticket_at=to_iso(row.last_ticket_at),
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def map_template_row(row: ResponseTemplate) -> TemplateDTO:
    return TemplateDTO(
        id=str(row.id),
        org_id=str(row.org_id),
        title=row.title,
        category=row.category,
        content=row.content,
        archived_at=to_iso(row.archived_at),
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def map_notification_row(row: Notification) -> NotificationDTO:
    return NotificationDTO(
        id=str(row.id),
        org_id=str(row.org_id),
        type=row.type,
        priority=row.priority,
        title=row.title,
        message=row.message,
        ticket_id=_str_or_none(row.ticket_id),
        read_at=to_iso(row.read_at),
        created_at=to_iso(row.created_at),
    )


def map_ticket_message_row(row: TicketMessage) -> TicketMessageDTO:
    return TicketMessageDTO(
        id=str(row.id),
        ticket_id=str(row.ticket_id),
        author_type=row.author_type,
        author_name=row.author_name,
        content=row.content,
        created_at=to_iso(row.created_at),
    )


def map_ai_settings_row(row: AISettings) -> AISettingsDTO:
    return AISettingsDTO(
        id=str(row.id),
        org_id=str(row.org_id),
        ai_enabled=row.ai_enabled,
        auto_reply=row.auto_reply,
        learning_mode=row.learning_mode,
        confidence_threshold=row.confidence_threshold,
        max_response_length=row.max_response_length,
        tone_value=row.tone_value,
        selected_persona=row.selected_persona,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def map_ai_run_row(row: AIRun) -> AIRunDTO:
    return AIRunDTO(
        id=str(row.id),
        ticket_id=str(row.ticket_id),
        status=row.status,
        intent=row.intent,
        urgency=row.urgency,
        confidence=_float_or_none(row.confidence),
        sentiment=_float_or_none(row.sentiment),
        draft_response=row.draft_response,
        error=row.error,
        created_at=to_iso(row.created_at),
        started_at=to_iso(row.started_at),
        finished_at=to_iso(row.finished_at),
    )


# ── Partial updates ──


def _present(body: Any, *names: str) -> dict[str, Any]:
    return {name: getattr(body, name) for name in names if name in body.model_fields_set}


def ticket_updates(body: PatchTicketRequest) -> dict[str, Any]:
    updates = _present(body, "subject", "content", "category", "priority", "status")
    if "content" in updates:
        updates["excerpt"] = make_excerpt(updates["content"])
    if "draft_response" in body.model_fields_set:
        updates["draft_response"] = body.draft_response
        updates["draft_updated_at"] = utc_now()
    return updates


def customer_updates(body: PatchCustomerRequest) -> dict[str, Any]:
    updates = _present(body, "name", "email", "orders", "ltv")
    if "email" in updates:
        updates["email"] = normalize_email(updates["email"])
    if "ltv" in updates:
        # Stored as numeric(12, 2); compare and write the stored value.
        updates["ltv"] = Decimal(str(updates["ltv"])).quantize(CENTS, rounding=ROUND_HALF_UP)
    return updates


def template_updates(body: PatchTemplateRequest) -> dict[str, Any]:
    return _present(body, "title", "category", "content", "archived_at")


def ai_settings_updates(body: PatchAISettingsRequest) -> dict[str, Any]:
    return _present(
        body,
        "ai_enabled",
        "auto_reply",
        "learning_mode",
        "confidence_threshold",
        "max_response_length",
        "tone_value",
        "selected_persona",
    )
