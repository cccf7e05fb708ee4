# webauth/config.py
#
# Settings are read from the environment (and .env) once, validated, and then
# frozen into a ServerConfig that is passed explicitly to every component.
# Nothing below is consulted per request.

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError
from .keys import Keypair
from .signers import THRESHOLD_CLASSES
from .tokens import TokenKey, load_token_key

TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"


class Settings(BaseSettings):
    SIGNING_KEY: str = ""
    JWT_PRIVATE_KEY: str = ""
    JWT_ISSUER: str = ""

    NETWORK_PASSPHRASE: str = TESTNET_PASSPHRASE
    HOME_DOMAIN: str = "localhost"
    WEB_AUTH_DOMAIN: str = ""

    CHALLENGE_EXPIRES_IN: int = 300
    JWT_EXPIRES_IN: int = 300
    CLOCK_SKEW_SECONDS: int = 5
    AUTH_THRESHOLD: str = "medium"

    HORIZON_URL: str = "https://horizon-testnet.stellar.org"
    HORIZON_TIMEOUT: float = 10.0

    PORT: int = 8000
    AUDIT_DIR: str = "audit"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @field_validator("SIGNING_KEY", "JWT_PRIVATE_KEY", "JWT_ISSUER", "NETWORK_PASSPHRASE", "AUDIT_DIR")
    @classmethod
    def strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("HOME_DOMAIN", "WEB_AUTH_DOMAIN")
    @classmethod
    def normalize_domain(cls, v: str) -> str:
        """
        Domain-only values. Accidental full URLs are reduced to their host
        (port kept, since home domains may carry one in development).
        """
        v = (v or "").strip()
        if "://" in v:
            p = urlparse(v)
            v = p.netloc or v
        return v.rstrip("/").lower()

    @field_validator("AUTH_THRESHOLD")
    @classmethod
    def normalize_threshold(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v == "med":
            v = "medium"
        if v not in THRESHOLD_CLASSES:
            raise ValueError(f"AUTH_THRESHOLD must be one of {', '.join(THRESHOLD_CLASSES)}")
        return v

    @field_validator("CHALLENGE_EXPIRES_IN", "JWT_EXPIRES_IN")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @field_validator("CLOCK_SKEW_SECONDS")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("HORIZON_TIMEOUT")
    @classmethod
    def timeout_bound(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HORIZON_TIMEOUT must be > 0")
        return v

    @field_validator("HORIZON_URL")
    @classmethod
    def normalize_horizon(cls, v: str) -> str:
        v = (v or "").strip().rstrip("/")
        p = urlparse(v)
        if p.scheme not in ("http", "https") or not p.hostname:
            raise ValueError("HORIZON_URL must be an absolute http(s) URL")
        return v


def load_settings(**overrides) -> Settings:
    try:
        return Settings(**overrides)
    except ValueError as e:
        raise ConfigError(f"invalid settings: {e}") from e


@dataclass(frozen=True)
class ServerConfig:
    signing_key: Keypair
    token_key: TokenKey
    issuer: str
    network_passphrase: str
    home_domain: str
    web_auth_domain: Optional[str]
    challenge_expires_in: int
    jwt_expires_in: int
    clock_skew: int
    threshold_class: str
    horizon_url: str
    horizon_timeout: float
    port: int
    audit_dir: Optional[Path]

    @property
    def server_address(self) -> str:
        return self.signing_key.address

    @classmethod
    def from_settings(cls, s: Settings) -> "ServerConfig":
        """Parse keys and freeze. Raises ConfigError on anything unusable."""
        if not s.SIGNING_KEY:
            raise ConfigError("SIGNING_KEY is required")
        if not s.JWT_PRIVATE_KEY:
            raise ConfigError("JWT_PRIVATE_KEY is required")
        if not s.HOME_DOMAIN:
            raise ConfigError("HOME_DOMAIN is required")
        if not s.NETWORK_PASSPHRASE:
            raise ConfigError("NETWORK_PASSPHRASE is required")

        signing_key = Keypair.from_seed(s.SIGNING_KEY)
        token_key = load_token_key(s.JWT_PRIVATE_KEY)

        return cls(
            signing_key=signing_key,
            token_key=token_key,
            issuer=s.JWT_ISSUER or signing_key.address,
            network_passphrase=s.NETWORK_PASSPHRASE,
            home_domain=s.HOME_DOMAIN,
            web_auth_domain=s.WEB_AUTH_DOMAIN or None,
            challenge_expires_in=s.CHALLENGE_EXPIRES_IN,
            jwt_expires_in=s.JWT_EXPIRES_IN,
            clock_skew=s.CLOCK_SKEW_SECONDS,
            threshold_class=s.AUTH_THRESHOLD,
            horizon_url=s.HORIZON_URL,
            horizon_timeout=s.HORIZON_TIMEOUT,
            port=s.PORT,
            audit_dir=Path(s.AUDIT_DIR) if s.AUDIT_DIR else None,
        )
