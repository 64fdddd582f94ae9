import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tollgate.models.request import AccessRequest, format_timestamp

audit_logger = logging.getLogger("tollgate.audit")


def to_serializable_dict(req: AccessRequest) -> dict:
    """
    Flattens a request into JSON-safe values.
    Timestamps become ISO 8601 UTC strings, enums their wire values.
    """
    return {
        "kind": req.kind.value,
        "name": req.name,
        "namespace": req.namespace,
        "uid": req.uid,
        "template_name": req.template_name,
        "duration": req.duration,
        "target_pod": req.target_pod,
        "created_at": format_timestamp(req.creation_timestamp),
        "phase": req.phase,
        "status": req.status.to_dict(),
    }


def log_audit_event(
    req: AccessRequest,
    event: str,
    detail: Optional[Dict[str, Any]] = None,
    output_dir: Optional[str] = None,
) -> Optional[str]:
    """
    Emits one structured audit line for a security-relevant transition.
    When output_dir is set the entry is also written as a durable JSON file.
    Returns the filepath of the created artifact, if any.
    """
    now = datetime.now(timezone.utc)
    log_entry = {
        "schema_version": "1.0",
        "timestamp": now.isoformat(),
        "event": event,
        "correlation_id": req.uid or req.ref,
        "request": to_serializable_dict(req),
        "detail": detail or {},
    }
    audit_logger.info(json.dumps(log_entry, sort_keys=True))

    if not output_dir:
        return None

    # Format: audit_logs/20261017T101500Z_team-a_alice-x7k2p_request.expired.json
    filename = f"{now.strftime('%Y%m%dT%H%M%SZ')}_{req.namespace}_{req.name}_{event}.json"
    filepath = os.path.join(output_dir, filename)

    # The logged line is authoritative; artifact I/O errors are logged, not raised.
    try:
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)
        with open(filepath, 'w') as f:
            json.dump(log_entry, f, indent=2)
    except OSError as e:
        audit_logger.error(f"Failed to write audit artifact {filepath}: {e}")
        return None

    return filepath
