# webauth/challenge.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Challenge issuance.
#
# A challenge is a never-submittable transaction envelope (seq_num 0) that
# binds:
#   - the client account (source of operation 0)
#   - this server (transaction source, plus the server's own signature)
#   - the home domain (operation 0 name: "<home_domain> auth")
#   - a 256-bit random nonce (operation 0 value, base64)
#   - a validity window (time bounds)
#   - the network (network id inside the transaction)
#
# Nothing is stored server-side. The server signature is what later proves
# the challenge was issued here, and the time bounds are its only expiry.
# -----------------------------------------------------------------------------

import base64
import binascii
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from .errors import EncodingError, InvalidAccount, SigningError
from .keys import Keypair, VersionByte, decode_strkey, encode_strkey
from .xdr import BASE_FEE, Envelope, ManageDataOp, Transaction, network_id

NONCE_BYTES = 32
WEB_AUTH_DOMAIN_KEY = "web_auth_domain"
AUTH_SUFFIX = " auth"


def data_name_for(home_domain: str) -> str:
    return home_domain + AUTH_SUFFIX


def _now_epoch() -> int:
    return int(time.time())


# -----------------------------------------------------------------------------
# Decoded view
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Challenge:
    envelope: Envelope

    @property
    def tx(self) -> Transaction:
        return self.envelope.tx

    @property
    def hash(self) -> bytes:
        return self.envelope.hash()

    @property
    def network_id(self) -> bytes:
        return self.tx.network_id

    @property
    def server(self) -> str:
        return encode_strkey(VersionByte.ACCOUNT, self.tx.source)

    @property
    def subject(self) -> Optional[str]:
        if not self.tx.operations or self.tx.operations[0].source is None:
            return None
        return encode_strkey(VersionByte.ACCOUNT, self.tx.operations[0].source)

    @property
    def home_domain(self) -> Optional[str]:
        if not self.tx.operations:
            return None
        name = self.tx.operations[0].name
        if not name.endswith(AUTH_SUFFIX):
            return None
        return name[: -len(AUTH_SUFFIX)]

    @property
    def web_auth_domain(self) -> Optional[str]:
        for op in self.tx.operations[1:]:
            if op.name == WEB_AUTH_DOMAIN_KEY and op.value is not None:
                return op.value.decode("utf-8", errors="replace")
        return None

    @property
    def nonce(self) -> Optional[bytes]:
        """Raw nonce bytes, or None if the data value is not valid base64."""
        if not self.tx.operations or self.tx.operations[0].value is None:
            return None
        try:
            return base64.b64decode(self.tx.operations[0].value, validate=True)
        except (binascii.Error, ValueError):
            return None

    @property
    def min_time(self) -> int:
        return self.tx.min_time

    @property
    def max_time(self) -> int:
        return self.tx.max_time

    def to_b64(self) -> str:
        return self.envelope.to_b64()


def read_challenge(encoded: str) -> Challenge:
    """Decode a base64 envelope. Raises EncodingError on any structural problem."""
    return Challenge(Envelope.from_b64(encoded))


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------
class ChallengeBuilder:
    def __init__(
        self,
        server_key: Keypair,
        network_passphrase: str,
        home_domain: str,
        expires_in: int,
        web_auth_domain: Optional[str] = None,
    ):
        if not server_key.can_sign:
            raise SigningError("server key cannot sign")
        self.server_key = server_key
        self.network_passphrase = network_passphrase
        self.home_domain = home_domain
        self.expires_in = int(expires_in)
        self.web_auth_domain = web_auth_domain

    def build(self, account: str, now: Optional[int] = None) -> Challenge:
        """
        Build and server-sign a fresh challenge for `account`.

        Raises:
          InvalidAccount: `account` is not a G... address
          EncodingError: fields do not fit the wire format
          SigningError: server key failed to sign
        """
        try:
            subject_raw = decode_strkey(VersionByte.ACCOUNT, account)
        except ValueError as e:
            raise InvalidAccount(f"invalid account: {e}") from e

        start = _now_epoch() if now is None else int(now)
        nonce = base64.b64encode(secrets.token_bytes(NONCE_BYTES))

        ops = [
            ManageDataOp(
                source=subject_raw,
                name=data_name_for(self.home_domain),
                value=nonce,
            )
        ]
        if self.web_auth_domain:
            ops.append(
                ManageDataOp(
                    source=self.server_key.raw_public_key,
                    name=WEB_AUTH_DOMAIN_KEY,
                    value=self.web_auth_domain.encode("utf-8"),
                )
            )

        tx = Transaction(
            network_id=network_id(self.network_passphrase),
            source=self.server_key.raw_public_key,
            min_time=start,
            max_time=start + self.expires_in,
            operations=tuple(ops),
            fee=BASE_FEE * len(ops),
        )
        envelope = Envelope(tx=tx)

        # Oversized fields surface here, before signing.
        try:
            envelope.to_bytes()
        except EncodingError:
            raise
        except Exception as e:
            raise EncodingError(f"challenge cannot be serialized: {e}") from e

        try:
            envelope.sign(self.server_key)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"server key failed to sign: {e}") from e

        return Challenge(envelope)
