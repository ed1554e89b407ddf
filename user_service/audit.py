"""Signed audit trail for user lifecycle and sync operations.

Each event is one JSON object per line in ``sync-events.jsonl``. The line
carries an HMAC-SHA256 ``signature`` over the canonical form of every other
field, so edits are caught by ``verify_audit_log()``.
"""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterator, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "sync-events.jsonl"

_SECRET_FILE_PATHS = [
    Path("/run/secrets/audit_log_signing_key"),
    Path(".runtime/secrets/audit_log_signing_key"),
]
_DEMO_SIGNING_KEY = "demo-audit-signing-key-change-in-production"

EventType = Literal[
    # Administrative lifecycle
    "user_create", "user_update", "user_delete",
    # Role management
    "role_grant", "roles_provisioned",
    # Reverse sync
    "user_push", "bulk_push",
]


@dataclass
class AuditEvent:
    event_type: str
    username: str
    operator: str = "system"
    realm: str = "sss-realm"
    success: bool = True
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat()
    )

    def signed_record(self) -> dict[str, Any]:
        record = asdict(self)
        signature = _sign(record)
        if signature:
            record["signature"] = signature
        return record


def _get_signing_key() -> bytes:
    """Resolve the key: AUDIT_LOG_SIGNING_KEY, then key files, then the demo key.

    An empty AUDIT_LOG_SIGNING_KEY disables signing.
    """
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ["AUDIT_LOG_SIGNING_KEY"].strip().encode("utf-8")

    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    for path in ([Path(key_file)] if key_file else []) + _SECRET_FILE_PATHS:
        if not path.is_file():
            continue
        try:
            return path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError as e:
            logger.warning("[audit] Cannot read signing key from %s: %s", path, e)
    return os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", _DEMO_SIGNING_KEY).encode("utf-8")


def _sign(record: dict[str, Any]) -> str:
    key = _get_signing_key()
    if not key:
        return ""
    canonical = json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    username: str,
    *,
    operator: str = "system",
    realm: str = "sss-realm",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append a signed event to the audit trail.

    Args:
        event_type: Kind of operation (user_create, bulk_push, ...)
        username: Target username, or "*" for realm-wide operations
        operator: Who performed it (admin username, "cli", "system")
        realm: Keycloak realm the operation touched
        details: Extra context such as roles, counts or the error message
        success: Whether the operation succeeded
    """
    record = AuditEvent(
        event_type=event_type,
        username=username,
        operator=operator,
        realm=realm,
        success=success,
        details=details or {},
    ).signed_record()

    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)
    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(event_type: EventType, username: str, **kwargs: Any) -> bool:
    """log_event() for callers whose operation already happened.

    A failing audit write is logged as a warning and reported as False.
    """
    try:
        log_event(event_type, username, **kwargs)
    except (OSError, TypeError, ValueError) as e:
        logger.warning("[audit] Failed to log %s event for %s: %s", event_type, username, e)
        return False
    return True


def read_events() -> Iterator[dict[str, Any] | None]:
    """Yield each non-blank line of the trail, None for lines that are not JSON."""
    if not AUDIT_LOG_FILE.exists():
        return
    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                yield None


def verify_audit_log() -> tuple[int, int]:
    """Check every signature with the current key.

    Returns:
        (events seen, events whose signature matches)
    """
    total = valid = 0
    for record in read_events():
        total += 1
        if record is None:
            continue
        signature = record.pop("signature", "")
        if signature and hmac.compare_digest(signature, _sign(record)):
            valid += 1
    return total, valid
