"""
Account Store Module

This module holds the in-memory registry of accounts and the public-key
credentials registered to them. Accounts live for the lifetime of the
process; there is no persistence backend.

Concurrency:
- A map-level lock protects the id -> account and address -> id indices.
- A store-wide credential lock protects the credential id -> account index.
- Each Account has its own lock protecting its credential list, so
  registrations for different accounts never contend beyond the brief
  index operations.
- Lock order is always credential lock -> account lock.

The AccountStore class provides:
- create_account / get_or_create_account: Register a new contact address
- find_by_address / find_by_id: Resolve an account
- has_credential: System-wide credential id uniqueness check
- append_credential: Unchecked append (caller deduplicates)
- bind_credential: Atomic uniqueness check + append
- advance_counter: Atomic signature counter update with clone detection

Usage:
    from authn.accounts import AccountStore, Credential

    store = AccountStore()
    account = store.create_account("Alice", "a@example.com")
    store.bind_credential(account.id, Credential(id=b"...", public_key=..., sign_count=0))
"""

import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from authn.errors import (
    AlreadyExists,
    CounterRegression,
    CredentialAlreadyBound,
    CredentialNotFound,
    UnknownAccount,
)

# Setup logging
logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """
    A public-key credential registered to an account.

    Credentials are immutable; a signature counter update produces a new
    Credential that replaces the old one in the account's list.

    Attributes:
        id: Opaque credential identifier produced by the authenticator.
        public_key: Engine-owned public key material. For the fido2 engine
                    this is an AttestedCredentialData instance.
        sign_count: Last signature counter reported by the authenticator.
        created_at: When the credential was registered.
    """

    id: bytes
    public_key: Any = field(repr=False)
    sign_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    def with_counter(self, sign_count: int) -> "Credential":
        """Return a copy of this credential with an updated counter."""
        return dataclasses.replace(self, sign_count=sign_count)


@dataclass(eq=False)
class Account:
    """
    An account that credentials are bound to.

    The identifier is random and never changes; the contact address is only
    used for lookup. Reads and writes of the credential list happen under the
    account's own lock.

    Attributes:
        id: Random 128-bit identifier (also used as the WebAuthn user handle).
        name: Display name.
        address: Contact address, unique across accounts.
        created_at: When the account was created.
    """

    id: uuid.UUID
    name: str
    address: str
    created_at: datetime = field(default_factory=_utcnow)
    _credentials: List[Credential] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def credentials(self) -> Tuple[Credential, ...]:
        """Snapshot of the registered credentials, in insertion order."""
        with self._lock:
            return tuple(self._credentials)

    @property
    def credential_ids(self) -> List[bytes]:
        with self._lock:
            return [cred.id for cred in self._credentials]

    def get_credential(self, credential_id: bytes) -> Optional[Credential]:
        with self._lock:
            for cred in self._credentials:
                if cred.id == credential_id:
                    return cred
        return None

    def _append(self, credential: Credential) -> None:
        with self._lock:
            self._credentials.append(credential)


def generate_account_id() -> uuid.UUID:
    """
    Generate a random account identifier.

    Returns:
        A random (version 4) UUID.
    """
    return uuid.uuid4()


class AccountStore:
    """
    Concurrent in-memory registry of accounts and their credentials.

    Instances are independent; the orchestrator receives one explicitly so
    tests can construct isolated stores.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._accounts: Dict[uuid.UUID, Account] = {}
        self._addresses: Dict[str, uuid.UUID] = {}

        self._credential_lock = threading.Lock()
        self._credential_owners: Dict[bytes, uuid.UUID] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def create_account(self, name: str, address: str) -> Account:
        """
        Create a new account for a contact address.

        Args:
            name: Display name for the account.
            address: Contact address; must not already be registered.

        Returns:
            The newly created Account.

        Raises:
            AlreadyExists: If the address is already registered.
        """
        account = Account(id=generate_account_id(), name=name, address=address)

        with self._lock:
            if address in self._addresses:
                raise AlreadyExists(f"account already exists for {address}")
            self._addresses[address] = account.id
            self._accounts[account.id] = account

        logger.info(f"Created account {account.id} for {address}")
        return account

    def get_or_create_account(self, name: str, address: str) -> Tuple[Account, bool]:
        """
        Resolve the account for an address, creating it if needed.

        Returns:
            Tuple of (account, created) where created is True if a new
            account was inserted by this call.
        """
        try:
            return self.create_account(name, address), True
        except AlreadyExists:
            return self.find_by_address(address), False

    def find_by_address(self, address: str) -> Account:
        """
        Look up an account by contact address.

        Raises:
            UnknownAccount: If no account has this address.
        """
        with self._lock:
            account_id = self._addresses.get(address)
            account = self._accounts.get(account_id) if account_id is not None else None

        if account is None:
            raise UnknownAccount(f"no account for {address}")
        return account

    def find_by_id(self, account_id: uuid.UUID) -> Account:
        """
        Look up an account by identifier.

        Raises:
            UnknownAccount: If no account has this identifier.
        """
        with self._lock:
            account = self._accounts.get(account_id)

        if account is None:
            raise UnknownAccount(f"no account with id {account_id}")
        return account

    def has_credential(self, credential_id: bytes) -> bool:
        """Check whether any account already owns this credential id."""
        with self._credential_lock:
            return credential_id in self._credential_owners

    def credential_owner(self, credential_id: bytes) -> Optional[uuid.UUID]:
        with self._credential_lock:
            return self._credential_owners.get(credential_id)

    def append_credential(self, account_id: uuid.UUID, credential: Credential) -> None:
        """
        Append a credential to an account without a uniqueness check.

        Callers are responsible for checking has_credential first; use
        bind_credential when the check and the append must be atomic.

        Raises:
            UnknownAccount: If the account does not exist.
        """
        account = self.find_by_id(account_id)

        with self._credential_lock:
            account._append(credential)
            self._credential_owners.setdefault(credential.id, account_id)

    def bind_credential(self, account_id: uuid.UUID, credential: Credential) -> None:
        """
        Atomically check that a credential id is unbound and append it.

        The system-wide check and the append happen inside one critical
        section, so two concurrent binds of the same credential id cannot
        both succeed.

        Raises:
            UnknownAccount: If the account does not exist.
            CredentialAlreadyBound: If any account already owns the credential id.
        """
        account = self.find_by_id(account_id)

        with self._credential_lock:
            owner = self._credential_owners.get(credential.id)
            if owner is not None:
                raise CredentialAlreadyBound(
                    "credential already assigned"
                    + (" to this account" if owner == account_id else "")
                )
            account._append(credential)
            self._credential_owners[credential.id] = account_id

        logger.info(f"Bound credential {credential.id.hex()[:16]} to account {account_id}")

    def advance_counter(
        self, account_id: uuid.UUID, credential_id: bytes, sign_count: int
    ) -> Credential:
        """
        Record a new signature counter for one of an account's credentials.

        The counter must be strictly greater than the stored one; anything
        else suggests a cloned authenticator.

        Args:
            account_id: Account that owns the credential.
            credential_id: Credential that produced the assertion.
            sign_count: Counter reported by the authenticator.

        Returns:
            The updated Credential.

        Raises:
            UnknownAccount: If the account does not exist.
            CredentialNotFound: If the account does not own the credential.
            CounterRegression: If sign_count <= the stored counter.
        """
        account = self.find_by_id(account_id)

        with account._lock:
            for index, cred in enumerate(account._credentials):
                if cred.id == credential_id:
                    break
            else:
                raise CredentialNotFound(
                    f"credential not registered to account {account_id}"
                )

            if sign_count <= cred.sign_count:
                raise CounterRegression(stored=cred.sign_count, received=sign_count)

            updated = cred.with_counter(sign_count)
            account._credentials[index] = updated

        logger.debug(
            f"Credential {credential_id.hex()[:16]} counter {cred.sign_count} -> {sign_count}"
        )
        return updated

    def list_accounts(self) -> List[Account]:
        """List all accounts in creation order."""
        with self._lock:
            return list(self._accounts.values())

    def stats(self) -> Dict[str, int]:
        """
        Get statistics about the store.

        Returns:
            Dictionary with:
            - total_accounts: Number of accounts
            - total_credentials: Number of bound credentials
        """
        with self._lock:
            total_accounts = len(self._accounts)
        with self._credential_lock:
            total_credentials = len(self._credential_owners)

        return {
            "total_accounts": total_accounts,
            "total_credentials": total_credentials,
        }
