import base64

import pytest

from webauth.config import ServerConfig, load_settings
from webauth.errors import ConfigError
from webauth.keys import Keypair
from webauth.tokens import generate_jwt_key

REQUIRED_ENV = ("SIGNING_KEY", "JWT_PRIVATE_KEY", "JWT_ISSUER", "HOME_DOMAIN", "WEB_AUTH_DOMAIN", "AUTH_THRESHOLD", "AUDIT_DIR")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for k in REQUIRED_ENV:
        monkeypatch.delenv(k, raising=False)
    # Keep a developer's .env out of the picture.
    monkeypatch.chdir(tmp_path)


def test_from_settings():
    kp = Keypair.random()
    s = load_settings(
        SIGNING_KEY=kp.seed,
        JWT_PRIVATE_KEY=generate_jwt_key(),
        HOME_DOMAIN="https://Example.com/",
        AUTH_THRESHOLD="MED",
        AUDIT_DIR="",
    )
    cfg = ServerConfig.from_settings(s)

    assert cfg.server_address == kp.address
    assert cfg.issuer == kp.address
    assert cfg.home_domain == "example.com"
    assert cfg.threshold_class == "medium"
    assert cfg.token_key.algorithm == "ES256"
    assert cfg.audit_dir is None
    assert cfg.web_auth_domain is None


def test_reads_environment(monkeypatch):
    kp = Keypair.random()
    monkeypatch.setenv("SIGNING_KEY", kp.seed)
    monkeypatch.setenv("JWT_PRIVATE_KEY", base64.b64encode(b"\x02" * 32).decode("ascii"))
    monkeypatch.setenv("JWT_ISSUER", "https://example.com")
    monkeypatch.setenv("CHALLENGE_EXPIRES_IN", "120")

    cfg = ServerConfig.from_settings(load_settings())
    assert cfg.issuer == "https://example.com"
    assert cfg.challenge_expires_in == 120
    assert cfg.token_key.algorithm == "EdDSA"


def test_missing_signing_key_is_fatal():
    with pytest.raises(ConfigError):
        ServerConfig.from_settings(load_settings(JWT_PRIVATE_KEY=generate_jwt_key()))


def test_bad_signing_key_is_fatal():
    s = load_settings(SIGNING_KEY="SBAD", JWT_PRIVATE_KEY=generate_jwt_key())
    with pytest.raises(ConfigError):
        ServerConfig.from_settings(s)


def test_bad_jwt_key_is_fatal():
    s = load_settings(SIGNING_KEY=Keypair.random().seed, JWT_PRIVATE_KEY="nope")
    with pytest.raises(ConfigError):
        ServerConfig.from_settings(s)


@pytest.mark.parametrize(
    "overrides",
    [
        {"AUTH_THRESHOLD": "payment"},
        {"CHALLENGE_EXPIRES_IN": 0},
        {"JWT_EXPIRES_IN": -1},
        {"CLOCK_SKEW_SECONDS": -5},
        {"HORIZON_URL": "ftp://horizon"},
        {"HORIZON_TIMEOUT": 0},
    ],
)
def test_invalid_settings(overrides):
    with pytest.raises(ConfigError):
        load_settings(**overrides)
