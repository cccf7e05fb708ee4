"""
webauth/audit.py

Tamper-evident authentication audit log.

One JSON object per line (JSONL). Each event is hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event_without_hash_fields) )

Each line stores:
  - prev_hash: hex string (64 chars)
  - hash:      hex string (64 chars)

Properties:
- Any modification, deletion, or reordering of log lines breaks the chain.
- Chain state is persisted in webauth_audit.state
- Uses file locking (flock) to keep chain consistent across workers.

Events never contain raw challenge envelopes or tokens; only hashes and
lengths of them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

# Linux file lock (works in Docker/Linux)
import fcntl

from .errors import AuditWriteFailed

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # 32 bytes hex

LOG_NAME = "webauth_audit.jsonl"
STATE_NAME = "webauth_audit.state"
LOCK_NAME = "webauth_audit.lock"


# -----------------------------------------------------------------------------
# Canonical JSON
# -----------------------------------------------------------------------------
def _canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def _chain(prev_hash: str, event: Dict[str, Any]) -> str:
    return _sha3_256_hex(bytes.fromhex(prev_hash) + _canonical_json_bytes(event))


# -----------------------------------------------------------------------------
# Event helpers
# -----------------------------------------------------------------------------
def build_common(
    *,
    event: str,
    account: Optional[str] = None,
    challenge_hash: Optional[str] = None,
    envelope_bytes: Optional[bytes] = None,
    request_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build common audit fields. Keep this "boring" and stable.
    """
    out: Dict[str, Any] = {
        "ts": int(time.time()),
        "event": event,
    }

    if account:
        out["account"] = account
    if challenge_hash:
        out["challenge_hash"] = challenge_hash
    if request_ip:
        out["request_ip"] = request_ip
    if user_agent:
        out["user_agent"] = user_agent[:200]

    if envelope_bytes is not None:
        out["envelope_len"] = len(envelope_bytes)
        out["envelope_sha3_256"] = _sha3_256_hex(envelope_bytes)

    return out


# -----------------------------------------------------------------------------
# Log
# -----------------------------------------------------------------------------
class AuditLog:
    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.log_path = self.directory / LOG_NAME
        self.state_path = self.directory / STATE_NAME
        self.lock_path = self.directory / LOCK_NAME

    def _read_last_hash_unlocked(self) -> str:
        """
        Read last hash from the state file. Caller must hold lock.
        Returns GENESIS_HASH if state missing/empty.
        """
        if not self.state_path.exists():
            return GENESIS_HASH
        s = self.state_path.read_text(encoding="utf-8").strip()
        if len(s) != 64:
            return GENESIS_HASH
        try:
            bytes.fromhex(s)
        except ValueError:
            return GENESIS_HASH
        return s.lower()

    def append(self, event: Dict[str, Any]) -> str:
        """
        Append one event with hash chaining. Returns the new chain head.

        Raises AuditWriteFailed if the audit directory cannot be written.
        """
        try:
            return self._append(event)
        except OSError as e:
            raise AuditWriteFailed(f"audit log write failed: {e.strerror or e}") from e

    def _append(self, event: Dict[str, Any]) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)

        # Dedicated lock file so it works even if log/state don't exist yet.
        with open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._read_last_hash_unlocked()

                # Never allow callers to inject their own chain fields.
                e = dict(event)
                e.pop("prev_hash", None)
                e.pop("hash", None)

                next_hash = _chain(prev_hash, e)

                stored = dict(e)
                stored["prev_hash"] = prev_hash
                stored["hash"] = next_hash

                with open(self.log_path, "ab") as f:
                    f.write(_canonical_json_bytes(stored) + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(next_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return next_hash

    def verify(self) -> bool:
        return verify_log_chain(self.log_path)


class NullAuditLog:
    """Used when AUDIT_DIR is empty."""

    def append(self, event: Dict[str, Any]) -> str:
        logger.debug("audit disabled; dropping event %s", event.get("event"))
        return GENESIS_HASH

    def verify(self) -> bool:
        return True


# -----------------------------------------------------------------------------
# Verification
# -----------------------------------------------------------------------------
def verify_log_chain(path: Path) -> bool:
    """
    Verify the hash chain of an audit log file.
    Returns True if valid, False otherwise.
    """
    path = Path(path)
    if not path.exists():
        return True

    prev = GENESIS_HASH
    with open(path, "rb") as f:
        for raw_line in f:
            raw_line = raw_line.strip()
            if not raw_line:
                continue
            try:
                obj = json.loads(raw_line.decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                return False
            if not isinstance(obj, dict):
                return False

            if obj.get("prev_hash") != prev:
                return False

            line_hash = obj.get("hash")
            body = dict(obj)
            body.pop("prev_hash", None)
            body.pop("hash", None)

            if _chain(prev, body) != line_hash:
                return False

            prev = line_hash

    return True
