"""
Core Module for the Passwordless Relying Party

This package contains the ceremony orchestration subsystem: the account
store, the challenge session codec, the WebAuthn engine and the orchestrator
that ties them together. It knows nothing about HTTP.

Main components:
    - config: Configuration loading and management
    - errors: Error taxonomy shared with the API layer
    - accounts: In-memory account and credential store
    - challenges: Encrypted single-use ceremony tokens
    - webauthn: AuthnEngine interface and the fido2 implementation
    - ceremony: Registration and login state machine

Usage:
    from authn import AccountStore, ChallengeSession, CeremonyOrchestrator
    from authn.webauthn import create_engine
"""

__version__ = "0.1.0"

from authn.config import (
    get_config,
    get_section,
    get_server_config,
    get_webauthn_config,
    get_session_config,
    get_logging_config,
)

from authn.errors import (
    AuthnError,
    AlreadyExists,
    NotFound,
    UnknownAccount,
    CredentialNotFound,
    InvalidCeremony,
    TamperedToken,
    ExpiredCeremony,
    ReplayedCeremony,
    WrongCeremonyKind,
    VerificationFailed,
    CredentialAlreadyBound,
    CounterRegression,
)

from authn.accounts import (
    Account,
    AccountStore,
    Credential,
    generate_account_id,
)

from authn.challenges import (
    CeremonyKind,
    ChallengeSession,
    PendingChallenge,
)

from authn.ceremony import (
    CeremonyOrchestrator,
    CeremonyStart,
    CeremonyResult,
)

__all__ = [
    "__version__",
    # Configuration
    "get_config",
    "get_section",
    "get_server_config",
    "get_webauthn_config",
    "get_session_config",
    "get_logging_config",
    # Errors
    "AuthnError",
    "AlreadyExists",
    "NotFound",
    "UnknownAccount",
    "CredentialNotFound",
    "InvalidCeremony",
    "TamperedToken",
    "ExpiredCeremony",
    "ReplayedCeremony",
    "WrongCeremonyKind",
    "VerificationFailed",
    "CredentialAlreadyBound",
    "CounterRegression",
    # Account store
    "Account",
    "AccountStore",
    "Credential",
    "generate_account_id",
    # Challenge sessions
    "CeremonyKind",
    "ChallengeSession",
    "PendingChallenge",
    # Orchestrator
    "CeremonyOrchestrator",
    "CeremonyStart",
    "CeremonyResult",
]
