# webauth/xdr.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Canonical binary encoding of the challenge artifact.
#
# XDR rules: big-endian integers, every item padded to a 4-byte boundary with
# zero bytes, variable-length items prefixed with a uint32 length.
#
#   Transaction  = network_id[32] source fee seq_num time_bounds memo ops<100> ext
#   Operation    = source? type(=MANAGE_DATA) data_name<64> data_value?<64>
#   Envelope     = Transaction DecoratedSignature<20>
#
# The signed payload is sha256(Transaction bytes). Because the network id is
# inside the Transaction, a signature for one network never verifies on another.
#
# Decoding is strict: trailing bytes, non-zero padding, oversized arrays and
# unknown union arms are all rejected. Any encoding has exactly one decoding.
# -----------------------------------------------------------------------------

import base64
import binascii
import hashlib
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import EncodingError
from .keys import HINT_LEN, KEY_LEN

KEY_TYPE_ED25519 = 0
MEMO_NONE = 0
MEMO_TEXT = 1
OP_MANAGE_DATA = 10

MAX_OPS = 100
MAX_SIGNATURES = 20
MAX_DATA_LEN = 64
MAX_MEMO_TEXT = 28
SIGNATURE_LEN = 64
BASE_FEE = 100


# -----------------------------------------------------------------------------
# Primitive packer / unpacker
# -----------------------------------------------------------------------------
def _pad(n: int) -> int:
    return (4 - n % 4) % 4


class Packer:
    def __init__(self):
        self._buf = bytearray()

    def uint32(self, v: int) -> None:
        self._buf += struct.pack(">I", v)

    def int32(self, v: int) -> None:
        self._buf += struct.pack(">i", v)

    def uint64(self, v: int) -> None:
        self._buf += struct.pack(">Q", v)

    def int64(self, v: int) -> None:
        self._buf += struct.pack(">q", v)

    def boolean(self, v: bool) -> None:
        self.uint32(1 if v else 0)

    def fixed(self, data: bytes, size: int) -> None:
        if len(data) != size:
            raise EncodingError(f"expected {size} bytes, got {len(data)}")
        self._buf += data + b"\x00" * _pad(size)

    def opaque(self, data: bytes, max_len: int) -> None:
        if len(data) > max_len:
            raise EncodingError(f"opaque field longer than {max_len} bytes")
        self.uint32(len(data))
        self._buf += data + b"\x00" * _pad(len(data))

    def string(self, s: str, max_len: int) -> None:
        self.opaque(s.encode("utf-8"), max_len)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class Unpacker:
    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def _take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise EncodingError("unexpected end of data")
        out = self._data[self._pos:end]
        self._pos = end
        return out

    def _skip_padding(self, n: int) -> None:
        if self._take(_pad(n)).strip(b"\x00"):
            raise EncodingError("non-zero padding")

    def uint32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def int32(self) -> int:
        return struct.unpack(">i", self._take(4))[0]

    def uint64(self) -> int:
        return struct.unpack(">Q", self._take(8))[0]

    def int64(self) -> int:
        return struct.unpack(">q", self._take(8))[0]

    def boolean(self) -> bool:
        v = self.uint32()
        if v not in (0, 1):
            raise EncodingError("invalid boolean")
        return v == 1

    def fixed(self, size: int) -> bytes:
        out = self._take(size)
        self._skip_padding(size)
        return out

    def opaque(self, max_len: int) -> bytes:
        n = self.uint32()
        if n > max_len:
            raise EncodingError(f"opaque field longer than {max_len} bytes")
        out = self._take(n)
        self._skip_padding(n)
        return out

    def string(self, max_len: int) -> str:
        try:
            return self.opaque(max_len).decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError("string is not valid UTF-8") from e

    def done(self) -> None:
        if self._pos != len(self._data):
            raise EncodingError("trailing bytes after envelope")


# -----------------------------------------------------------------------------
# Structures
# -----------------------------------------------------------------------------
def _pack_account(p: Packer, raw_key: bytes) -> None:
    p.int32(KEY_TYPE_ED25519)
    p.fixed(raw_key, KEY_LEN)


def _unpack_account(u: Unpacker) -> bytes:
    if u.int32() != KEY_TYPE_ED25519:
        raise EncodingError("unsupported public key type")
    return u.fixed(KEY_LEN)


@dataclass(frozen=True)
class ManageDataOp:
    source: Optional[bytes]
    name: str
    value: Optional[bytes]

    def pack(self, p: Packer) -> None:
        p.boolean(self.source is not None)
        if self.source is not None:
            _pack_account(p, self.source)
        p.int32(OP_MANAGE_DATA)
        p.string(self.name, MAX_DATA_LEN)
        p.boolean(self.value is not None)
        if self.value is not None:
            p.opaque(self.value, MAX_DATA_LEN)

    @classmethod
    def unpack(cls, u: Unpacker) -> "ManageDataOp":
        source = _unpack_account(u) if u.boolean() else None
        if u.int32() != OP_MANAGE_DATA:
            raise EncodingError("unsupported operation type")
        name = u.string(MAX_DATA_LEN)
        value = u.opaque(MAX_DATA_LEN) if u.boolean() else None
        return cls(source=source, name=name, value=value)


@dataclass(frozen=True)
class Transaction:
    network_id: bytes
    source: bytes
    min_time: int
    max_time: int
    operations: Tuple[ManageDataOp, ...]
    seq_num: int = 0
    fee: int = 0
    memo_text: Optional[str] = None

    def pack(self, p: Packer) -> None:
        if not 0 < len(self.operations) <= MAX_OPS:
            raise EncodingError("transaction must carry 1..100 operations")
        p.fixed(self.network_id, 32)
        _pack_account(p, self.source)
        p.uint32(self.fee)
        p.int64(self.seq_num)
        p.uint64(self.min_time)
        p.uint64(self.max_time)
        if self.memo_text is None:
            p.uint32(MEMO_NONE)
        else:
            p.uint32(MEMO_TEXT)
            p.string(self.memo_text, MAX_MEMO_TEXT)
        p.uint32(len(self.operations))
        for op in self.operations:
            op.pack(p)
        p.int32(0)

    @classmethod
    def unpack(cls, u: Unpacker) -> "Transaction":
        network_id = u.fixed(32)
        source = _unpack_account(u)
        fee = u.uint32()
        seq_num = u.int64()
        min_time = u.uint64()
        max_time = u.uint64()
        memo_type = u.uint32()
        if memo_type == MEMO_NONE:
            memo_text = None
        elif memo_type == MEMO_TEXT:
            memo_text = u.string(MAX_MEMO_TEXT)
        else:
            raise EncodingError("unsupported memo type")
        n_ops = u.uint32()
        if n_ops > MAX_OPS:
            raise EncodingError("too many operations")
        ops = tuple(ManageDataOp.unpack(u) for _ in range(n_ops))
        if u.int32() != 0:
            raise EncodingError("unsupported transaction extension")
        return cls(
            network_id=network_id,
            source=source,
            min_time=min_time,
            max_time=max_time,
            operations=ops,
            seq_num=seq_num,
            fee=fee,
            memo_text=memo_text,
        )

    def to_bytes(self) -> bytes:
        p = Packer()
        self.pack(p)
        return p.getvalue()

    def hash(self) -> bytes:
        return hashlib.sha256(self.to_bytes()).digest()


@dataclass(frozen=True)
class DecoratedSignature:
    hint: bytes
    signature: bytes

    def pack(self, p: Packer) -> None:
        p.fixed(self.hint, HINT_LEN)
        p.opaque(self.signature, SIGNATURE_LEN)

    @classmethod
    def unpack(cls, u: Unpacker) -> "DecoratedSignature":
        hint = u.fixed(HINT_LEN)
        signature = u.opaque(SIGNATURE_LEN)
        return cls(hint=hint, signature=signature)


@dataclass
class Envelope:
    tx: Transaction
    signatures: List[DecoratedSignature] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        if len(self.signatures) > MAX_SIGNATURES:
            raise EncodingError("too many signatures")
        p = Packer()
        self.tx.pack(p)
        p.uint32(len(self.signatures))
        for sig in self.signatures:
            sig.pack(p)
        return p.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "Envelope":
        u = Unpacker(data)
        tx = Transaction.unpack(u)
        n_sigs = u.uint32()
        if n_sigs > MAX_SIGNATURES:
            raise EncodingError("too many signatures")
        sigs = [DecoratedSignature.unpack(u) for _ in range(n_sigs)]
        u.done()
        return cls(tx=tx, signatures=sigs)

    def to_b64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def from_b64(cls, s: str) -> "Envelope":
        try:
            raw = base64.b64decode(str(s).strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncodingError("envelope is not valid base64") from e
        return cls.from_bytes(raw)

    def hash(self) -> bytes:
        return self.tx.hash()

    def sign(self, keypair) -> DecoratedSignature:
        sig = DecoratedSignature(hint=keypair.hint, signature=keypair.sign(self.hash()))
        self.signatures.append(sig)
        return sig


def network_id(passphrase: str) -> bytes:
    return hashlib.sha256(passphrase.encode("utf-8")).digest()
