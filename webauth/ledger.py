# webauth/ledger.py
#
# Ledger query client: fetch an account's signers and thresholds.
#
# This is the only blocking call on the verification path. Every request goes
# out under a wall-clock deadline; running past it is reported as AccountLookupFailed
# (503, retryable), never as a client error.

import json
import logging
from time import monotonic
from typing import Any, Dict, Optional

import requests

from .errors import AccountLookupFailed, AccountNotFound
from .signers import AccountSigners, Signer, SignerKind, Thresholds

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
CHUNK_SIZE = 8192
MAX_BODY_BYTES = 1 << 20


def _signer_kind(value: Any) -> Optional[SignerKind]:
    try:
        return SignerKind(str(value))
    except ValueError:
        return None


def parse_account(address: str, body: Dict[str, Any]) -> AccountSigners:
    """
    Build AccountSigners from a Horizon account resource.

    Signers of unknown type are dropped: they can never countersign.
    """
    try:
        raw_signers = body.get("signers") or []
        signers = []
        for s in raw_signers:
            kind = _signer_kind(s.get("type", SignerKind.ED25519.value))
            if kind is None:
                logger.debug("ignoring signer of unknown type %r", s.get("type"))
                continue
            signers.append(Signer(key=str(s["key"]), weight=int(s["weight"]), kind=kind))

        th = body.get("thresholds") or {}
        thresholds = Thresholds(
            low=int(th.get("low_threshold", 0)),
            medium=int(th.get("med_threshold", 0)),
            high=int(th.get("high_threshold", 0)),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise AccountLookupFailed(f"unparseable account response: {e}") from e

    return AccountSigners(address=address, signers=tuple(signers), thresholds=thresholds)


class HorizonLedger:
    """
    Minimal Horizon client.

    `timeout` bounds the whole lookup, connect through the last body byte.
    requests applies its own timeout per connect and per socket read, so the
    body is streamed and the deadline is checked between chunks.

    Any object exposing `load_account(address) -> AccountSigners` and raising
    AccountNotFound / AccountLookupFailed can be used in its place.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def load_account(self, address: str) -> AccountSigners:
        url = f"{self.base_url}/accounts/{address}"
        deadline = monotonic() + self.timeout
        try:
            r = self.session.get(url, timeout=self.timeout, headers={"Accept": "application/json"}, stream=True)
        except requests.Timeout as e:
            raise AccountLookupFailed(f"account lookup timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise AccountLookupFailed(f"account lookup failed: {e.__class__.__name__}") from e

        try:
            if r.status_code == 404:
                raise AccountNotFound(f"account {address} not found")
            if not 200 <= r.status_code < 300:
                raise AccountLookupFailed(f"account lookup returned HTTP {r.status_code}")
            raw = self._read_body(r, deadline)
        finally:
            r.close()

        try:
            body = json.loads(raw)
        except ValueError as e:
            raise AccountLookupFailed("account lookup returned invalid JSON") from e
        if not isinstance(body, dict):
            raise AccountLookupFailed("account lookup returned unexpected JSON")

        return parse_account(address, body)

    def _read_body(self, r: requests.Response, deadline: float) -> bytes:
        chunks = []
        size = 0
        try:
            for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                if monotonic() > deadline:
                    raise AccountLookupFailed(f"account lookup timed out after {self.timeout}s")
                size += len(chunk)
                if size > MAX_BODY_BYTES:
                    raise AccountLookupFailed("account lookup response too large")
                chunks.append(chunk)
        except requests.RequestException as e:
            raise AccountLookupFailed(f"account lookup failed: {e.__class__.__name__}") from e
        return b"".join(chunks)

    def close(self) -> None:
        self.session.close()
