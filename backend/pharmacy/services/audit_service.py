# Overview: Audit sink for order and QR mutations.

from __future__ import annotations

import json
import logging

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog
from .background import get_background_tasks


logger = logging.getLogger(__name__)


def _write_audit_row(payload: dict) -> None:
    db.session.add(AuditLog(**payload))
    db.session.commit()


def record_event(
    action: str,
    resource: str,
    resource_id: str | None = None,
    *,
    actor_id: str | None = None,
    success: bool = True,
    error_message: str | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> None:
    """
    Record action/resource/actor/success for a mutation.

    Best-effort: the row is written on the background queue, so the caller
    must have committed its own work first.
    """
    payload = {
        "user_id": actor_id,
        "action": action,
        "resource": resource,
        "resource_id": resource_id,
        "old_values": json.dumps(old_values) if old_values is not None else None,
        "new_values": json.dumps(new_values) if new_values is not None else None,
        "success": success,
        "error_message": error_message,
    }
    if has_request_context():
        payload["ip_address"] = request.remote_addr
        payload["user_agent"] = (request.user_agent.string or "")[:500]
        payload["request_id"] = request.headers.get("X-Request-Id")

    logger.debug("Audit %s %s %s success=%s", action, resource, resource_id, success)
    get_background_tasks().submit("audit:%s" % action, _write_audit_row, payload)
