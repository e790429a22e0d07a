"""
Authentication Engine Interfaces

This module defines the abstract interface the ceremony orchestrator uses to
produce challenges and verify authenticator responses. The orchestrator never
touches WebAuthn wire formats or signatures itself; everything protocol
specific lives behind AuthnEngine.

The engine has four operations, two per ceremony:
1. new_registration_challenge / verify_registration
2. new_login_challenge / verify_login

Usage:
    from authn.webauthn.interfaces import AuthnEngine, LoginAssertion

    class MyEngine(AuthnEngine):
        ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from authn.accounts import Account, Credential


# Options are returned to the client verbatim and must be JSON serializable.
ChallengeOptions = Dict[str, Any]


@dataclass(frozen=True)
class LoginAssertion:
    """
    Result of a verified login assertion.

    Attributes:
        credential_id: Credential that produced the assertion.
        counter: Signature counter reported by the authenticator.
    """

    credential_id: bytes
    counter: int


class AuthnEngine(ABC):
    """
    Abstract base class for WebAuthn challenge generation and verification.

    Implementations may block on cryptographic work but must not perform
    network or disk I/O. Verification failures of any kind are reported by
    raising authn.errors.VerificationFailed.
    """

    @abstractmethod
    def new_registration_challenge(
        self, account: Account, exclude_credential_ids: Sequence[bytes]
    ) -> Tuple[ChallengeOptions, bytes]:
        """
        Create credential creation options for an account.

        Args:
            account: Account the new credential will be bound to.
            exclude_credential_ids: Credentials the account already owns; the
                client is told not to re-register the same authenticator.

        Returns:
            Tuple of (options, challenge) where options go to the client and
            challenge is kept for verification.
        """
        pass

    @abstractmethod
    def verify_registration(self, challenge: bytes, response: Dict[str, Any]) -> Credential:
        """
        Verify an attestation response against the issued challenge.

        Args:
            challenge: Challenge bytes from new_registration_challenge.
            response: Client's PublicKeyCredential as parsed JSON.

        Returns:
            The new Credential to bind.

        Raises:
            VerificationFailed: On any cryptographic or challenge mismatch.
        """
        pass

    @abstractmethod
    def new_login_challenge(self, account: Account) -> Tuple[ChallengeOptions, bytes]:
        """
        Create credential request options scoped to an account's credentials.

        Returns:
            Tuple of (options, challenge).
        """
        pass

    @abstractmethod
    def verify_login(
        self, account: Account, challenge: bytes, response: Dict[str, Any]
    ) -> LoginAssertion:
        """
        Verify an assertion response against the issued challenge.

        Args:
            account: Account the ceremony is bound to; supplies the public keys.
            challenge: Challenge bytes from new_login_challenge.
            response: Client's PublicKeyCredential as parsed JSON.

        Returns:
            LoginAssertion with the credential id and its new counter.

        Raises:
            VerificationFailed: On any cryptographic or challenge mismatch.
        """
        pass
