from typing import Dict, Optional

import pytest

from webauth.challenge import ChallengeBuilder
from webauth.config import TESTNET_PASSPHRASE, ServerConfig
from webauth.errors import AccountNotFound
from webauth.keys import Keypair
from webauth.signers import AccountSigners, Signer, Thresholds
from webauth.tokens import generate_jwt_key, load_token_key
from webauth.verifier import ChallengeVerifier
from webauth.xdr import Envelope

HOME_DOMAIN = "example.com"
NOW = 1_700_000_000


class InMemoryLedger:
    """Stand-in for the Horizon client."""

    def __init__(self):
        self.accounts: Dict[str, AccountSigners] = {}
        self.fail_with: Optional[Exception] = None
        self.calls = []

    def add(self, address: str, signers, medium: int = 0, low: int = 0, high: int = 0) -> AccountSigners:
        acct = AccountSigners(
            address=address,
            signers=tuple(Signer(key=k, weight=w) for k, w in signers),
            thresholds=Thresholds(low=low, medium=medium, high=high),
        )
        self.accounts[address] = acct
        return acct

    def load_account(self, address: str) -> AccountSigners:
        self.calls.append(address)
        if self.fail_with is not None:
            raise self.fail_with
        try:
            return self.accounts[address]
        except KeyError:
            raise AccountNotFound(f"account {address} not found")


def countersign(tx_b64: str, *keypairs: Keypair) -> str:
    env = Envelope.from_b64(tx_b64)
    for kp in keypairs:
        env.sign(kp)
    return env.to_b64()


@pytest.fixture
def server_kp():
    return Keypair.random()


@pytest.fixture
def client_kp():
    return Keypair.random()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def builder(server_kp):
    return ChallengeBuilder(
        server_key=server_kp,
        network_passphrase=TESTNET_PASSPHRASE,
        home_domain=HOME_DOMAIN,
        expires_in=300,
    )


@pytest.fixture
def verifier(server_kp, ledger):
    return ChallengeVerifier(
        server_key=server_kp,
        network_passphrase=TESTNET_PASSPHRASE,
        home_domain=HOME_DOMAIN,
        ledger=ledger,
        clock_skew=5,
    )


@pytest.fixture
def token_key():
    return load_token_key(generate_jwt_key())


@pytest.fixture
def config(server_kp, token_key, tmp_path):
    return ServerConfig(
        signing_key=server_kp,
        token_key=token_key,
        issuer="https://example.com/auth",
        network_passphrase=TESTNET_PASSPHRASE,
        home_domain=HOME_DOMAIN,
        web_auth_domain=None,
        challenge_expires_in=300,
        jwt_expires_in=600,
        clock_skew=5,
        threshold_class="medium",
        horizon_url="https://horizon.invalid",
        horizon_timeout=2.0,
        port=8000,
        audit_dir=tmp_path / "audit",
    )
