"""
Error Taxonomy for Ceremony Orchestration

Every failure the core can report is a subclass of AuthnError. Each class
carries a machine-readable ``code`` and the HTTP ``status_code`` the API layer
answers with, so the transport can map errors without inspecting messages.

Hierarchy:
    AuthnError
    ├── AlreadyExists
    ├── NotFound
    │   ├── UnknownAccount
    │   └── CredentialNotFound
    ├── InvalidCeremony
    │   ├── TamperedToken
    │   ├── ExpiredCeremony
    │   ├── ReplayedCeremony
    │   └── WrongCeremonyKind
    ├── VerificationFailed
    ├── CredentialAlreadyBound
    └── CounterRegression

Usage:
    from authn.errors import AuthnError, UnknownAccount

    try:
        account = store.find_by_address("a@example.com")
    except UnknownAccount:
        ...
"""


class AuthnError(Exception):
    """Base class for all ceremony and account store failures."""

    code = "AUTHN_ERROR"
    status_code = 400
    default_message = "authentication error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class AlreadyExists(AuthnError):
    """Raised when an account with the same contact address is already registered."""

    code = "ALREADY_EXISTS"
    status_code = 409
    default_message = "account already exists"


class NotFound(AuthnError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "not found"


class UnknownAccount(NotFound):
    """Raised when an account cannot be resolved by address or identifier."""

    code = "UNKNOWN_ACCOUNT"
    default_message = "account not found"


class CredentialNotFound(NotFound):
    code = "UNKNOWN_CREDENTIAL"
    default_message = "credential not found"


class InvalidCeremony(AuthnError):
    """
    Raised when a ceremony token is absent, malformed, or otherwise unusable.

    The subclasses narrow down why the token was rejected; callers that only
    care that the ceremony must be restarted can catch InvalidCeremony.
    """

    code = "INVALID_CEREMONY"
    default_message = "no ceremony in progress"


class TamperedToken(InvalidCeremony):
    code = "TAMPERED_CEREMONY"
    default_message = "ceremony token failed integrity check"


class ExpiredCeremony(InvalidCeremony):
    code = "EXPIRED_CEREMONY"
    default_message = "ceremony has expired"


class ReplayedCeremony(InvalidCeremony):
    code = "REPLAYED_CEREMONY"
    default_message = "ceremony token already used"


class WrongCeremonyKind(InvalidCeremony):
    code = "WRONG_CEREMONY_KIND"
    default_message = "ceremony token is for a different ceremony"


class VerificationFailed(AuthnError):
    """Raised when the engine rejects an attestation or assertion."""

    code = "VERIFICATION_FAILED"
    status_code = 401
    default_message = "credential verification failed"


class CredentialAlreadyBound(AuthnError):
    """Raised when a credential id is already attributed to an account."""

    code = "CREDENTIAL_ALREADY_BOUND"
    status_code = 409
    default_message = "credential already assigned"


class CounterRegression(AuthnError):
    """
    Raised when an authenticator reports a signature counter that is not
    strictly greater than the stored one (possible cloned authenticator).
    """

    code = "COUNTER_REGRESSION"
    status_code = 401
    default_message = "signature counter did not increase"

    def __init__(self, stored: int, received: int):
        self.stored = stored
        self.received = received
        super().__init__(
            f"signature counter did not increase (stored={stored}, received={received})"
        )
