# webauth/errors.py
#
# Error taxonomy.
#
#   ChallengeError      client sent something we will not accept    -> 400
#   DependencyError     ledger lookup failed, client may retry      -> 503
#   ConfigError/...     operator problem, fatal at startup          -> 500
#
# Every error carries a stable snake_case `reason` so callers can branch on it
# without parsing messages.

from typing import Any, Dict, Optional


class WebAuthError(Exception):
    status_code = 500
    error = "server_error"
    reason = "internal_error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.__class__.__doc__ or self.reason
        self.extra = extra
        super().__init__(self.message)

    def detail(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error": self.error,
            "reason": self.reason,
            "message": self.message,
        }
        out.update(self.extra)
        return out


# -----------------------------------------------------------------------------
# Fatal / operator errors
# -----------------------------------------------------------------------------
class ConfigError(WebAuthError):
    """Invalid server configuration."""
    reason = "config_error"


class SigningError(WebAuthError):
    """Server key is unusable for signing."""
    reason = "signing_error"


class AuditWriteFailed(WebAuthError):
    """Audit event could not be recorded."""
    reason = "audit_write_failed"


class EncodingError(WebAuthError):
    """Artifact cannot be canonically serialized or parsed."""
    reason = "encoding_error"


# -----------------------------------------------------------------------------
# Client errors
# -----------------------------------------------------------------------------
class ChallengeError(WebAuthError):
    status_code = 400
    error = "bad_request"
    reason = "invalid_challenge"


class MalformedChallenge(ChallengeError):
    """Challenge transaction is malformed."""
    reason = "malformed_challenge"


class NetworkMismatch(ChallengeError):
    """Challenge was built for a different network."""
    reason = "network_mismatch"


class ChallengeExpired(ChallengeError):
    """Challenge has expired."""
    reason = "challenge_expired"


class ChallengeNotYetValid(ChallengeError):
    """Challenge is not valid yet."""
    reason = "challenge_not_yet_valid"


class AudienceMismatch(ChallengeError):
    """Challenge home domain does not match this server."""
    reason = "audience_mismatch"


class MissingServerSignature(ChallengeError):
    """Challenge is not signed by this server."""
    reason = "missing_server_signature"


class NoSubjectAccount(ChallengeError):
    """Challenge does not name a client account."""
    reason = "no_subject_account"


class InsufficientSignatureWeight(ChallengeError):
    """Client signatures do not meet the account threshold."""
    error = "not_authorized"
    reason = "insufficient_signature_weight"

    def __init__(self, required: int, obtained: int):
        super().__init__(
            f"signature weight {obtained} does not meet required threshold {required}",
            required=required,
            obtained=obtained,
        )
        self.required = required
        self.obtained = obtained


class InvalidAccount(ChallengeError):
    """Account address is not a valid public key."""
    reason = "invalid_account"


# -----------------------------------------------------------------------------
# Dependency errors
# -----------------------------------------------------------------------------
class DependencyError(WebAuthError):
    status_code = 503
    error = "service_unavailable"
    reason = "dependency_error"


class AccountLookupFailed(DependencyError):
    """Account lookup failed; try again later."""
    reason = "account_lookup_failed"


class AccountNotFound(WebAuthError):
    """Account does not exist on the ledger."""
    status_code = 404
    error = "not_found"
    reason = "account_not_found"
