import json
import logging
from typing import Any

from flask import g, has_request_context, request

from app.treetrace.models import CurrentUser

audit_logger = logging.getLogger("treetrace.audit")


def record_event(
    *,
    actor: CurrentUser | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Append-only audit event, written as one JSON line to the audit logger.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = {
        "request_id": rid,
        "actor_user_id": actor.id if actor else None,
        "actor_user_email": actor.email if actor else None,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "reason": reason,
        "metadata": metadata,
        "client_ip": request.remote_addr if in_request else None,
    }
    audit_logger.info(json.dumps(ev, sort_keys=True, default=str))
    return ev
