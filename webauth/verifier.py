# webauth/verifier.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Challenge verification. Checks run in a fixed order and the first failure
# short-circuits with its own error kind:
#
#   1. decode + structure          MalformedChallenge
#   2. network id                  NetworkMismatch
#   3. time bounds (+/- skew)      ChallengeNotYetValid / ChallengeExpired
#   4. home domain / web auth      AudienceMismatch
#   5. server signature            MissingServerSignature
#   6. client account              NoSubjectAccount
#   7. ledger lookup               AccountLookupFailed (503)
#   8. client signatures           (invalid / unknown signers are ignored)
#   9. weight vs threshold         InsufficientSignatureWeight
#
# Signature validity (8) is decided separately from weight accounting (9), so
# extra garbage signatures from multi-wallet clients do not sink an otherwise
# sufficiently signed challenge.
# -----------------------------------------------------------------------------

import hmac
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .challenge import NONCE_BYTES, Challenge, data_name_for, read_challenge
from .errors import (
    AccountNotFound,
    AudienceMismatch,
    ChallengeExpired,
    ChallengeNotYetValid,
    EncodingError,
    InsufficientSignatureWeight,
    MalformedChallenge,
    MissingServerSignature,
    NetworkMismatch,
    NoSubjectAccount,
)
from .keys import Keypair
from .signers import THRESHOLD_CLASSES, AccountSigners, verify_signer_weight
from .xdr import DecoratedSignature, network_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    account: str
    challenge_hash: str
    signers: Tuple[str, ...] = ()
    weight: int = 0
    account_exists: bool = True


class ChallengeVerifier:
    def __init__(
        self,
        server_key: Keypair,
        network_passphrase: str,
        home_domain: str,
        ledger,
        *,
        web_auth_domain: Optional[str] = None,
        clock_skew: int = 0,
        threshold_class: str = "medium",
    ):
        if threshold_class not in THRESHOLD_CLASSES:
            raise ValueError(f"unknown threshold class: {threshold_class}")
        self.server_key = server_key
        self.network_id = network_id(network_passphrase)
        self.home_domain = home_domain
        self.web_auth_domain = web_auth_domain
        self.ledger = ledger
        self.clock_skew = int(clock_skew)
        self.threshold_class = threshold_class

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def verify(self, encoded: str, now: Optional[int] = None) -> VerifiedIdentity:
        now = int(time.time()) if now is None else int(now)

        challenge = self._decode(encoded)
        self._check_network(challenge)
        self._check_time_bounds(challenge, now)
        self._check_audience(challenge)
        client_sigs = self._check_server_signature(challenge)
        subject = self._subject(challenge)
        account = self._load_account(subject)

        presented = self._verify_client_signatures(challenge, account, client_sigs)
        threshold = account.thresholds.for_class(self.threshold_class)
        result = verify_signer_weight(
            account.signers,
            threshold,
            presented,
            fallback_address=None if account.exists else subject,
        )
        if not result.accepted:
            raise InsufficientSignatureWeight(required=result.threshold, obtained=result.weight)

        logger.info(
            "challenge verified account=%s weight=%d threshold=%d signers=%d",
            subject, result.weight, result.threshold, len(result.counted),
        )
        return VerifiedIdentity(
            account=subject,
            challenge_hash=challenge.hash.hex(),
            signers=result.counted,
            weight=result.weight,
            account_exists=account.exists,
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------
    def _decode(self, encoded: str) -> Challenge:
        try:
            challenge = read_challenge(encoded)
        except EncodingError as e:
            raise MalformedChallenge(f"challenge could not be decoded: {e.message}") from e

        tx = challenge.tx
        if tx.source != self.server_key.raw_public_key:
            raise MalformedChallenge("challenge transaction source is not this server")
        if tx.seq_num != 0:
            raise MalformedChallenge("challenge sequence number must be 0")
        if not tx.operations:
            raise MalformedChallenge("challenge has no operations")
        if tx.max_time <= tx.min_time:
            raise MalformedChallenge("challenge has an invalid time window")
        for op in tx.operations[1:]:
            if op.source != self.server_key.raw_public_key:
                raise MalformedChallenge("extra operations must be sourced by the server")
        nonce = challenge.nonce
        if nonce is None or len(nonce) != NONCE_BYTES:
            raise MalformedChallenge("challenge nonce is malformed")
        return challenge

    def _check_network(self, challenge: Challenge) -> None:
        if not hmac.compare_digest(challenge.network_id, self.network_id):
            raise NetworkMismatch()

    def _check_time_bounds(self, challenge: Challenge, now: int) -> None:
        if now < challenge.min_time - self.clock_skew:
            raise ChallengeNotYetValid(valid_from=challenge.min_time)
        if now > challenge.max_time + self.clock_skew:
            raise ChallengeExpired(expired_at=challenge.max_time)

    def _check_audience(self, challenge: Challenge) -> None:
        expected = data_name_for(self.home_domain)
        if challenge.tx.operations[0].name != expected:
            raise AudienceMismatch(expected=self.home_domain, got=challenge.home_domain)
        if self.web_auth_domain and challenge.web_auth_domain != self.web_auth_domain:
            raise AudienceMismatch(
                "challenge web_auth_domain does not match this server",
                expected=self.web_auth_domain,
                got=challenge.web_auth_domain,
            )

    def _check_server_signature(self, challenge: Challenge) -> List[DecoratedSignature]:
        """Find the server signature; return every other signature."""
        tx_hash = challenge.hash
        hint = self.server_key.hint
        sigs = challenge.envelope.signatures
        for i, sig in enumerate(sigs):
            if sig.hint == hint and self.server_key.verify(tx_hash, sig.signature):
                return sigs[:i] + sigs[i + 1:]
        raise MissingServerSignature()

    def _subject(self, challenge: Challenge) -> str:
        subject = challenge.subject
        if subject is None:
            raise NoSubjectAccount()
        if challenge.tx.operations[0].source == self.server_key.raw_public_key:
            raise NoSubjectAccount("challenge subject cannot be the server account")
        return subject

    def _load_account(self, subject: str) -> AccountSigners:
        # TODO: the fallback also covers accounts merged away after issuance;
        # decide whether only never-funded accounts should get it.
        try:
            return self.ledger.load_account(subject)
        except AccountNotFound:
            logger.info("account %s not found; using its own key as sole signer", subject)
            return AccountSigners.for_unfunded(subject)

    def _verify_client_signatures(
        self,
        challenge: Challenge,
        account: AccountSigners,
        sigs: List[DecoratedSignature],
    ) -> List[Tuple[str, bool]]:
        tx_hash = challenge.hash
        signers = account.countersigners()

        candidates: List[Tuple[str, Keypair]] = []
        for s in signers:
            try:
                candidates.append((s.key, Keypair.from_address(s.key)))
            except ValueError:
                logger.warning("skipping unparseable signer key on account %s", account.address)

        presented: List[Tuple[str, bool]] = []
        for sig in sigs:
            matched = [(k, kp) for k, kp in candidates if kp.hint == sig.hint]
            if not matched:
                continue
            hit = next((k for k, kp in matched if kp.verify(tx_hash, sig.signature)), None)
            if hit is not None:
                presented.append((hit, True))
            else:
                presented.extend((k, False) for k, _ in matched)
        return presented
