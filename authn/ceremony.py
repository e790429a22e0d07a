"""
Ceremony Orchestrator Module

This module drives the registration and login ceremonies. Each ceremony is a
two step exchange, begin then finish, and both kinds share that shape:

    begin(kind)   resolve account -> engine challenge -> issue token
    finish(kind)  consume token -> resolve account -> engine verify -> commit

The named wrappers resolve the account. The engine call that produces the
challenge and the verify-and-commit step are looked up per kind.

Every failure is final. The token is consumed as soon as finish reads it, so
a failed finish can only be followed by a fresh begin.

Usage:
    from authn.ceremony import CeremonyOrchestrator

    orchestrator = CeremonyOrchestrator(AccountStore(), engine, ChallengeSession())
    start = orchestrator.begin_registration("Alice", "a@example.com")
    # ... client performs navigator.credentials.create(start.options) ...
    result = orchestrator.finish_registration(start.token, response)
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from authn.accounts import Account, AccountStore
from authn.challenges import CeremonyKind, ChallengeSession, PendingChallenge
from authn.errors import AuthnError
from authn.webauthn.interfaces import AuthnEngine, ChallengeOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CeremonyStart:
    """
    Output of a begin call.

    Attributes:
        kind: Ceremony that was started.
        account_id: Account the ceremony is bound to.
        options: Challenge options to return to the client verbatim.
        token: Opaque token the transport must deliver back on finish.
    """

    kind: CeremonyKind
    account_id: uuid.UUID
    options: ChallengeOptions
    token: str


@dataclass(frozen=True)
class CeremonyResult:
    """
    Output of a successful finish call.

    Attributes:
        kind: Ceremony that was finished.
        account_id: Account the ceremony was bound to.
        credential_id: Credential registered or used to log in.
        sign_count: Signature counter stored for that credential.
    """

    kind: CeremonyKind
    account_id: uuid.UUID
    credential_id: bytes
    sign_count: int


class CeremonyOrchestrator:
    """
    State machine for registration and login ceremonies.

    The orchestrator owns no global state: the account store, the challenge
    session codec and the engine are injected. It performs no I/O and never
    holds a lock while calling the engine.
    """

    def __init__(
        self,
        accounts: AccountStore,
        engine: AuthnEngine,
        sessions: ChallengeSession,
    ):
        self.accounts = accounts
        self.engine = engine
        self.sessions = sessions

        self._challengers: Dict[CeremonyKind, Callable[[Account], Tuple[ChallengeOptions, bytes]]] = {
            CeremonyKind.REGISTRATION: self._registration_challenge,
            CeremonyKind.LOGIN: self.engine.new_login_challenge,
        }
        self._committers: Dict[CeremonyKind, Callable[[Account, PendingChallenge, Dict[str, Any]], CeremonyResult]] = {
            CeremonyKind.REGISTRATION: self._commit_registration,
            CeremonyKind.LOGIN: self._commit_login,
        }

    # ============================================================
    # Named ceremony operations
    # ============================================================

    def begin_registration(self, name: str, address: str) -> CeremonyStart:
        """
        Start registering a credential for an address.

        The account is created if the address is new; an existing account
        may register additional credentials.

        Args:
            name: Display name, used only when creating the account.
            address: Contact address identifying the account.

        Returns:
            CeremonyStart with creation options and the ceremony token.
        """
        account, created = self.accounts.get_or_create_account(name, address)
        if not created:
            logger.info(f"Registering an additional credential for account {account.id}")
        return self.begin(CeremonyKind.REGISTRATION, account)

    def finish_registration(self, token: Optional[str], response: Dict[str, Any]) -> CeremonyResult:
        """
        Verify an attestation and bind the new credential.

        Raises:
            InvalidCeremony: If the token is absent, tampered, expired, reused
                             or was issued for login.
            UnknownAccount: If the bound account no longer exists.
            VerificationFailed: If the engine rejects the response.
            CredentialAlreadyBound: If the credential is already registered.
        """
        return self.finish(CeremonyKind.REGISTRATION, token, response)

    def begin_login(self, address: str) -> CeremonyStart:
        """
        Start a login for an existing address.

        Raises:
            UnknownAccount: If no account has this address.
        """
        account = self.accounts.find_by_address(address)
        return self.begin(CeremonyKind.LOGIN, account)

    def finish_login(self, token: Optional[str], response: Dict[str, Any]) -> CeremonyResult:
        """
        Verify an assertion and record the authenticator's new counter.

        Raises:
            InvalidCeremony: If the token is absent, tampered, expired, reused
                             or was issued for registration.
            UnknownAccount: If the bound account no longer exists.
            VerificationFailed: If the engine rejects the response.
            CounterRegression: If the counter did not strictly increase.
        """
        return self.finish(CeremonyKind.LOGIN, token, response)

    # ============================================================
    # Shared workflow
    # ============================================================

    def begin(self, kind: CeremonyKind, account: Account) -> CeremonyStart:
        """
        Produce challenge material for an account and issue its token.

        Args:
            kind: Ceremony to start.
            account: Resolved account the ceremony is bound to.

        Returns:
            CeremonyStart with options and token.
        """
        kind = CeremonyKind(kind)
        options, challenge = self._challengers[kind](account)
        token = self.sessions.issue(kind, account.id, challenge)

        logger.info(f"Began {kind.value} ceremony for account {account.id}")
        return CeremonyStart(kind=kind, account_id=account.id, options=options, token=token)

    def finish(
        self, kind: CeremonyKind, token: Optional[str], response: Dict[str, Any]
    ) -> CeremonyResult:
        """
        Complete a ceremony started by begin().

        Args:
            kind: Ceremony the caller is finishing.
            token: Token issued by begin().
            response: Client's PublicKeyCredential as parsed JSON.

        Returns:
            CeremonyResult describing the committed change.

        Raises:
            AuthnError: Any subclass, see finish_registration / finish_login.
        """
        kind = CeremonyKind(kind)
        try:
            pending = self.sessions.consume(token, kind)
            account = self.accounts.find_by_id(pending.account_id)
            result = self._committers[kind](account, pending, response)
        except AuthnError as e:
            logger.warning(f"{kind.value} ceremony rejected: {e.code}: {e}")
            raise

        logger.info(
            f"Finished {kind.value} ceremony for account {result.account_id} "
            f"(credential {result.credential_id.hex()[:16]}, counter {result.sign_count})"
        )
        return result

    # ============================================================
    # Per-kind steps
    # ============================================================

    def _registration_challenge(self, account: Account) -> Tuple[ChallengeOptions, bytes]:
        return self.engine.new_registration_challenge(account, account.credential_ids)

    def _commit_registration(
        self, account: Account, pending: PendingChallenge, response: Dict[str, Any]
    ) -> CeremonyResult:
        credential = self.engine.verify_registration(pending.challenge, response)
        self.accounts.bind_credential(account.id, credential)

        return CeremonyResult(
            kind=CeremonyKind.REGISTRATION,
            account_id=account.id,
            credential_id=credential.id,
            sign_count=credential.sign_count,
        )

    def _commit_login(
        self, account: Account, pending: PendingChallenge, response: Dict[str, Any]
    ) -> CeremonyResult:
        assertion = self.engine.verify_login(account, pending.challenge, response)
        updated = self.accounts.advance_counter(
            account.id, assertion.credential_id, assertion.counter
        )

        return CeremonyResult(
            kind=CeremonyKind.LOGIN,
            account_id=account.id,
            credential_id=updated.id,
            sign_count=updated.sign_count,
        )
