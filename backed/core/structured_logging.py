"""Structured logging helpers (no donor PII)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    donor_id: UUID | str | None = None,
    school_id: UUID | str | None = None,
    project_id: UUID | str | None = None,
    request_id: str | None = None,
    payment_reference: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict suitable for ``logger.x(..., extra=...)``.

    Only identifiers are included; names, emails and messages never are.
    """
    context: dict[str, Any] = {}
    if donor_id:
        context["donor_id"] = str(donor_id)
    if school_id:
        context["school_id"] = str(school_id)
    if project_id:
        context["project_id"] = str(project_id)
    if request_id:
        context["request_id"] = request_id
    if payment_reference:
        context["payment_reference"] = payment_reference
    return context
