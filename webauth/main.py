# webauth/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# Thin orchestration glue:
#   - wires the two HTTP endpoints to the domain primitives
#   - MUST NOT implement crypto itself (keys.py, xdr.py, tokens.py do)
#   - keeps no state between requests; the only shared values are the frozen
#     ServerConfig and the components built from it at startup
#
# Protocol:
#   GET  /?account=G...   -> server-signed challenge transaction (base64)
#   POST /                -> client-countersigned challenge in, JWT out
#
# Error mapping:
#   ChallengeError        -> 400 (client must try again differently)
#   AccountLookupFailed   -> 503 (client may retry later)
#   SigningError/...      -> 500 (operator problem)
# -----------------------------------------------------------------------------

import base64
import binascii
import hashlib
import logging
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Request

from .audit import AuditLog, NullAuditLog, build_common
from .challenge import ChallengeBuilder
from .config import ServerConfig
from .errors import AuditWriteFailed, InvalidAccount, MalformedChallenge, WebAuthError
from .ledger import HorizonLedger
from .models import ChallengeResponse, TokenResponse
from .tokens import TokenIssuer
from .verifier import ChallengeVerifier

logger = logging.getLogger(__name__)


def _fail(e: WebAuthError):
    raise HTTPException(status_code=e.status_code, detail=e.detail())


def _client(request: Request):
    return (
        request.client.host if request.client else None,
        request.headers.get("user-agent"),
    )


def _envelope_bytes(tx_b64: str) -> bytes:
    # For audit hashing only; the verifier does the real decoding.
    try:
        return base64.b64decode(tx_b64, validate=True)
    except (binascii.Error, ValueError):
        return tx_b64.encode("utf-8", errors="replace")


def create_app(config: ServerConfig, ledger=None, audit=None) -> FastAPI:
    """
    Build the FastAPI application.

    `ledger` defaults to a HorizonLedger on config.horizon_url; `audit`
    defaults to an AuditLog in config.audit_dir (disabled when unset).
    """
    if ledger is None:
        ledger = HorizonLedger(config.horizon_url, timeout=config.horizon_timeout)
    if audit is None:
        audit = AuditLog(config.audit_dir) if config.audit_dir else NullAuditLog()

    builder = ChallengeBuilder(
        server_key=config.signing_key,
        network_passphrase=config.network_passphrase,
        home_domain=config.home_domain,
        expires_in=config.challenge_expires_in,
        web_auth_domain=config.web_auth_domain,
    )
    verifier = ChallengeVerifier(
        server_key=config.signing_key,
        network_passphrase=config.network_passphrase,
        home_domain=config.home_domain,
        ledger=ledger,
        web_auth_domain=config.web_auth_domain,
        clock_skew=config.clock_skew,
        threshold_class=config.threshold_class,
    )
    issuer = TokenIssuer(config.token_key, issuer=config.issuer, expires_in=config.jwt_expires_in)

    app = FastAPI(
        title="Web Authentication Server",
        version="0.1.0",
    )
    app.state.config = config
    app.state.builder = builder
    app.state.verifier = verifier
    app.state.issuer = issuer
    app.state.audit = audit

    def record(event, *, required: bool) -> None:
        # A challenge or token is only handed out once its event is on disk.
        try:
            audit.append(event)
        except AuditWriteFailed as e:
            logger.error("audit write failed for %s event: %s", event.get("event"), e.message)
            if required:
                _fail(e)

    # -------------------------------------------------------------------------
    # Challenge issuance
    # -------------------------------------------------------------------------
    @app.get("/", response_model=ChallengeResponse)
    def challenge(request: Request, account: Optional[str] = None):
        request_ip, user_agent = _client(request)
        try:
            if not account:
                raise InvalidAccount("missing account parameter")
            ch = builder.build(account.strip())
        except WebAuthError as e:
            if e.status_code >= 500:
                logger.error("challenge issuance failed: %s", e.message)
            _fail(e)

        record(
            {
                **build_common(
                    event="challenge_issued",
                    account=ch.subject,
                    challenge_hash=ch.hash.hex(),
                    request_ip=request_ip,
                    user_agent=user_agent,
                ),
                "valid_from": ch.min_time,
                "valid_until": ch.max_time,
            },
            required=True,
        )
        return ChallengeResponse(
            transaction=ch.to_b64(),
            network_passphrase=config.network_passphrase,
        )

    # -------------------------------------------------------------------------
    # Token issuance
    # -------------------------------------------------------------------------
    @app.post("/", response_model=TokenResponse)
    def token(request: Request, body: dict = Body(...)):
        request_ip, user_agent = _client(request)

        tx_b64 = body.get("transaction")
        if not isinstance(tx_b64, str) or not tx_b64.strip():
            _fail(MalformedChallenge("missing field: transaction"))
        tx_b64 = tx_b64.strip()

        try:
            identity = verifier.verify(tx_b64)
            issued = issuer.issue(identity.account, jti=identity.challenge_hash)
        except WebAuthError as e:
            record(
                {
                    **build_common(
                        event="error" if e.status_code >= 500 else "denied",
                        envelope_bytes=_envelope_bytes(tx_b64),
                        request_ip=request_ip,
                        user_agent=user_agent,
                    ),
                    "reason": e.reason,
                    "status": e.status_code,
                },
                required=False,
            )
            if e.status_code >= 500:
                logger.error("token issuance failed: %s", e.message)
            else:
                logger.info("challenge rejected: %s (%s)", e.reason, e.message)
            _fail(e)

        record(
            {
                **build_common(
                    event="token_issued",
                    account=identity.account,
                    challenge_hash=identity.challenge_hash,
                    request_ip=request_ip,
                    user_agent=user_agent,
                ),
                "signers": list(identity.signers),
                "weight": identity.weight,
                "account_exists": identity.account_exists,
                "token_sha256": hashlib.sha256(issued.token.encode("ascii")).hexdigest(),
                "expires_at": issued.expires_at,
            },
            required=True,
        )
        return TokenResponse(token=issued.token)

    return app
