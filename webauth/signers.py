# webauth/signers.py
#
# Signer-weight accounting. Pure functions, no I/O.
#
# An account authorizes an action when the summed weight of distinct signers
# with valid signatures reaches the threshold for that action class.

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

THRESHOLD_CLASSES = ("low", "medium", "high")


class SignerKind(str, Enum):
    ED25519 = "ed25519_public_key"
    PRE_AUTH_TX = "preauth_tx"
    HASH_X = "sha256_hash"

    @property
    def can_countersign(self) -> bool:
        """Only plain keys can produce a signature over a challenge."""
        return self is SignerKind.ED25519


@dataclass(frozen=True)
class Signer:
    key: str
    weight: int
    kind: SignerKind = SignerKind.ED25519


@dataclass(frozen=True)
class Thresholds:
    low: int = 0
    medium: int = 0
    high: int = 0

    def for_class(self, name: str) -> int:
        if name not in THRESHOLD_CLASSES:
            raise ValueError(f"unknown threshold class: {name}")
        return getattr(self, name)


@dataclass(frozen=True)
class AccountSigners:
    address: str
    signers: Tuple[Signer, ...]
    thresholds: Thresholds = field(default_factory=Thresholds)
    exists: bool = True

    @classmethod
    def for_unfunded(cls, address: str) -> "AccountSigners":
        # An account not on the ledger yet is controlled by its own key alone.
        return cls(
            address=address,
            signers=(Signer(key=address, weight=1),),
            thresholds=Thresholds(),
            exists=False,
        )

    def countersigners(self) -> List[Signer]:
        return [s for s in dedupe_signers(self.signers) if s.kind.can_countersign and s.weight > 0]


@dataclass(frozen=True)
class WeightResult:
    accepted: bool
    weight: int
    threshold: int
    counted: Tuple[str, ...] = ()


def dedupe_signers(signers: Iterable[Signer]) -> List[Signer]:
    """
    Collapse repeated keys to a single entry carrying the largest weight.
    Order of first appearance is kept.
    """
    best: Dict[str, Signer] = {}
    for s in signers:
        cur = best.get(s.key)
        if cur is None or s.weight > cur.weight:
            best[s.key] = s
    return list(best.values())


def verify_signer_weight(
    signers: Iterable[Signer],
    threshold: int,
    presented: Iterable[Tuple[str, bool]],
    *,
    fallback_address: Optional[str] = None,
) -> WeightResult:
    """
    Decide whether `presented` signatures authorize an account.

    Args:
      signers: the account's signer list.
      threshold: weight required. Values below 1 are raised to 1 so an empty
        submission never authorizes anything.
      presented: (public key address, signature valid) pairs.
      fallback_address: sole signer (weight 1) when `signers` is empty; pass it
        only for an account that is not on the ledger.

    Returns WeightResult with the summed weight of distinct valid signers.
    """
    signer_list = dedupe_signers(signers)
    if not signer_list and fallback_address:
        signer_list = [Signer(key=fallback_address, weight=1)]

    weights = {
        s.key: s.weight
        for s in signer_list
        if s.kind.can_countersign and s.weight > 0
    }

    counted: List[str] = []
    total = 0
    for key, valid in presented:
        if not valid or key in counted:
            continue
        w = weights.get(key)
        if w is None:
            continue
        counted.append(key)
        total += w

    required = max(int(threshold), 1)
    return WeightResult(
        accepted=total >= required,
        weight=total,
        threshold=required,
        counted=tuple(counted),
    )
