# webauth/tokens.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Bearer token layer.
#
# Responsibilities:
#   - Load the token-signing key once at startup
#   - Mint compact JWS tokens (JWT) for verified accounts
#   - Decode/verify them for operators and tests
#
# Security model:
#   - The token key is NOT the challenge signing key. Rotating one never
#     requires rotating the other.
#   - Tokens are stateless and self-verifying. There is no revocation list;
#     operators shorten JWT_EXPIRES_IN and rotate the key instead.
#
# Accepted key formats:
#   - PEM private key: EC P-256 -> ES256, Ed25519 -> EdDSA
#   - base64 of a raw 32-byte Ed25519 seed (env var friendly) -> EdDSA
# -----------------------------------------------------------------------------

import base64
import binascii
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .errors import ConfigError, SigningError


# -----------------------------------------------------------------------------
# Key loading
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TokenKey:
    private_key: Any
    algorithm: str
    kid: str

    @property
    def public_key(self):
        return self.private_key.public_key()

    def public_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")


def _key_id(private_key) -> str:
    der = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:16]


def _token_key(private_key) -> TokenKey:
    if isinstance(private_key, Ed25519PrivateKey):
        alg = "EdDSA"
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise ConfigError("JWT EC key must use the P-256 curve")
        alg = "ES256"
    else:
        raise ConfigError("JWT private key must be EC P-256 or Ed25519")
    return TokenKey(private_key=private_key, algorithm=alg, kid=_key_id(private_key))


def load_token_key(value: str) -> TokenKey:
    """
    Parse JWT_PRIVATE_KEY.

    Raises ConfigError when the value is neither a supported PEM key nor the
    base64 of a 32-byte Ed25519 seed.
    """
    value = (value or "").strip()
    if not value:
        raise ConfigError("JWT private key is empty")

    if value.startswith("-----BEGIN"):
        try:
            sk = serialization.load_pem_private_key(value.encode("ascii"), password=None)
        except (ValueError, TypeError) as e:
            raise ConfigError(f"invalid JWT private key PEM: {e}") from e
        return _token_key(sk)

    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError("JWT private key is neither PEM nor base64") from e
    if len(raw) != 32:
        raise ConfigError("Ed25519 raw private key must be 32 bytes (base64 of 32 bytes)")
    return _token_key(Ed25519PrivateKey.from_private_bytes(raw))


def generate_jwt_key() -> str:
    """New EC P-256 private key as PKCS8 PEM."""
    sk = ec.generate_private_key(ec.SECP256R1())
    return sk.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


# -----------------------------------------------------------------------------
# Issuer
# -----------------------------------------------------------------------------
@dataclass
class IssuedToken:
    token: str
    claims: Dict[str, Any]

    @property
    def expires_at(self) -> int:
        return int(self.claims["exp"])


class TokenIssuer:
    def __init__(self, key: TokenKey, issuer: str, expires_in: int):
        self.key = key
        self.issuer = issuer
        self.expires_in = int(expires_in)

    def issue(self, subject: str, *, jti: Optional[str] = None, now: Optional[int] = None) -> IssuedToken:
        iat = int(time.time()) if now is None else int(now)
        claims: Dict[str, Any] = {
            "iss": self.issuer,
            "sub": subject,
            "iat": iat,
            "exp": iat + self.expires_in,
        }
        if jti:
            claims["jti"] = jti

        try:
            token = jwt.encode(
                claims,
                self.key.private_key,
                algorithm=self.key.algorithm,
                headers={"kid": self.key.kid},
            )
        except Exception as e:
            raise SigningError(f"token signing failed: {e}") from e
        return IssuedToken(token=token, claims=claims)

    def decode(self, token: str, *, leeway: int = 0) -> Dict[str, Any]:
        """
        Verify signature, issuer and expiry and return the claims.

        Raises jwt.InvalidTokenError subclasses (ExpiredSignatureError,
        InvalidIssuerError, InvalidSignatureError, ...).
        """
        return jwt.decode(
            token,
            self.key.public_key,
            algorithms=[self.key.algorithm],
            issuer=self.issuer,
            leeway=leeway,
            options={"require": ["exp", "iat", "sub", "iss"]},
        )
