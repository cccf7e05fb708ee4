# webauth/keys.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Account identity layer.
#
# Accounts, signers and seeds travel as "strkeys":
#
#     base32( version_byte || payload || crc16_xmodem(version_byte || payload) )
#
# The checksum is little-endian. The version byte selects the leading letter:
#   G = account public key     S = account seed
#   T = pre-authorized tx hash X = hash-x (sha256 preimage) signer
#
# Only G/S keys are Ed25519 material. T/X signers are opaque 32-byte hashes and
# can never produce a signature over a challenge.
# -----------------------------------------------------------------------------

import base64
import binascii
import secrets
import struct
from enum import IntEnum
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import ConfigError, SigningError


class VersionByte(IntEnum):
    ACCOUNT = 6 << 3
    SEED = 18 << 3
    PRE_AUTH_TX = 19 << 3
    HASH_X = 23 << 3


KEY_LEN = 32
HINT_LEN = 4


# -----------------------------------------------------------------------------
# CRC16-XModem
# -----------------------------------------------------------------------------
def crc16_xmodem(data: bytes) -> int:
    return binascii.crc_hqx(data, 0)


# -----------------------------------------------------------------------------
# Strkey codec
# -----------------------------------------------------------------------------
def encode_strkey(version: VersionByte, payload: bytes) -> str:
    if len(payload) != KEY_LEN:
        raise ValueError("strkey payload must be 32 bytes")
    body = bytes([version]) + payload
    checksum = struct.pack("<H", crc16_xmodem(body))
    return base64.b32encode(body + checksum).decode("ascii")


def decode_strkey(version: VersionByte, s: str) -> bytes:
    """
    Decode a strkey of the expected version and return its 32-byte payload.

    Raises ValueError on bad alphabet, length, version byte or checksum.
    """
    s = str(s).strip()
    if len(s) != 56:
        raise ValueError("strkey must be 56 characters")
    try:
        raw = base64.b32decode(s.encode("ascii"), casefold=False)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError("strkey is not valid base32") from e

    body, checksum = raw[:-2], raw[-2:]
    if body[0] != version:
        raise ValueError("unexpected strkey version byte")
    if struct.pack("<H", crc16_xmodem(body)) != checksum:
        raise ValueError("strkey checksum mismatch")
    return body[1:]


def is_valid_address(s: str) -> bool:
    try:
        decode_strkey(VersionByte.ACCOUNT, s)
    except ValueError:
        return False
    return True


# -----------------------------------------------------------------------------
# Keypair
# -----------------------------------------------------------------------------
class Keypair:
    """
    Ed25519 account keypair.

    A keypair built from an address is verify-only; `sign` raises
    SigningError on it.
    """

    def __init__(self, public_key: Ed25519PublicKey, private_key: Optional[Ed25519PrivateKey] = None):
        self._public_key = public_key
        self._private_key = private_key
        self._raw_public = public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def from_seed(cls, seed: str) -> "Keypair":
        try:
            raw = decode_strkey(VersionByte.SEED, seed)
        except ValueError as e:
            raise ConfigError(f"invalid signing key seed: {e}") from e
        sk = Ed25519PrivateKey.from_private_bytes(raw)
        return cls(sk.public_key(), sk)

    @classmethod
    def from_raw_seed(cls, raw: bytes) -> "Keypair":
        sk = Ed25519PrivateKey.from_private_bytes(raw)
        return cls(sk.public_key(), sk)

    @classmethod
    def from_address(cls, address: str) -> "Keypair":
        raw = decode_strkey(VersionByte.ACCOUNT, address)
        return cls.from_public_bytes(raw)

    @classmethod
    def from_public_bytes(cls, raw: bytes) -> "Keypair":
        return cls(Ed25519PublicKey.from_public_bytes(raw))

    @classmethod
    def random(cls) -> "Keypair":
        return cls.from_raw_seed(secrets.token_bytes(KEY_LEN))

    @property
    def address(self) -> str:
        return encode_strkey(VersionByte.ACCOUNT, self._raw_public)

    @property
    def seed(self) -> str:
        if self._private_key is None:
            raise SigningError("keypair has no private key")
        raw = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return encode_strkey(VersionByte.SEED, raw)

    @property
    def raw_public_key(self) -> bytes:
        return self._raw_public

    @property
    def hint(self) -> bytes:
        return signature_hint(self._raw_public)

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    def sign(self, data: bytes) -> bytes:
        if self._private_key is None:
            raise SigningError("keypair has no private key")
        return self._private_key.sign(data)

    def verify(self, data: bytes, signature: bytes) -> bool:
        try:
            self._public_key.verify(signature, data)
        except InvalidSignature:
            return False
        return True

    def __eq__(self, other) -> bool:
        return isinstance(other, Keypair) and other._raw_public == self._raw_public

    def __hash__(self) -> int:
        return hash(self._raw_public)

    def __repr__(self) -> str:
        return f"Keypair({self.address})"


def signature_hint(raw_public_key: bytes) -> bytes:
    # Last four bytes of the public key, used to pick candidate signers.
    return bytes(raw_public_key[-HINT_LEN:])
