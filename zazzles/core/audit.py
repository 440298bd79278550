"""Audit trail for billing-relevant actions (signup, top-ups, purchases, promo redemptions)."""

from typing import Any

from zazzles.models.audit_log import AuditLog


async def log_event(
    business_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    await AuditLog(
        business_id=business_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    ).insert()
