from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

from fastapi import Request

from app.utils import iso_ts


logger = logging.getLogger("audit")


def _safe_json(v: Any, max_len: int = 2000) -> Any:
    """Keep audit payloads light; truncate long strings."""
    if v is None:
        return None
    if isinstance(v, (int, float, bool)):
        return v
    if isinstance(v, str):
        return v if len(v) <= max_len else v[:max_len] + "..."
    if isinstance(v, list):
        return [_safe_json(x, max_len=max_len) for x in v][:200]
    if isinstance(v, dict):
        out: dict[str, Any] = {}
        for k, val in list(v.items())[:200]:
            out[str(k)] = _safe_json(val, max_len=max_len)
        return out

    s = str(v)
    return s if len(s) <= max_len else s[:max_len] + "..."


def shallow_diff(before: Optional[dict[str, Any]], after: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Return only changed top-level fields as {field: {before, after}}."""
    b = before or {}
    a = after or {}

    diff: dict[str, Any] = {}
    for k in sorted(set(b.keys()) | set(a.keys())):
        if k in ("_id", "revision", "updated_at"):
            continue
        bv = b.get(k)
        av = a.get(k)
        if bv != av:
            diff[k] = {"before": _safe_json(bv), "after": _safe_json(av)}
    return diff


def _origin(request: Optional[Request]) -> dict[str, Any]:
    if request is None:
        return {}
    xff = request.headers.get("x-forwarded-for")
    ip = xff.split(",")[0].strip() if xff else (request.client.host if request.client else "")
    return {
        "ip": ip,
        "user_agent": request.headers.get("user-agent", ""),
        "path": str(request.url.path),
        "method": request.method,
        "correlation_id": getattr(request.state, "correlation_id", None),
    }


async def write_audit_log(
    db,
    *,
    actor: Optional[dict[str, Any]],
    action: str,
    target_type: str,
    target_id: str,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
    meta: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> bool:
    """Persist an audit entry.

    actor expected: {user_id, role} (the authenticated principal), or None for
    system jobs. Failures are logged and never break the calling operation.
    """

    actor = actor or {}
    doc = {
        "_id": str(uuid.uuid4()),
        "actor": {
            "user_id": actor.get("user_id") or "system",
            "role": actor.get("role"),
        },
        "origin": _origin(request),
        "action": action,
        "target": {"type": target_type, "id": target_id},
        "diff": shallow_diff(before, after),
        "meta": _safe_json(meta or {}),
        "created_at": iso_ts(),
    }

    try:
        json.dumps(doc, default=str)
    except (TypeError, ValueError):
        doc["meta"] = {"note": "meta_unserializable"}

    try:
        await db.audit_logs.insert_one(doc)
        return True
    except Exception:
        logger.exception("audit_write_failed action=%s target=%s:%s", action, target_type, target_id)
        return False
