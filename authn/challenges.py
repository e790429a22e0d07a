"""
Challenge Session Module

A pending ceremony's state (which ceremony, which account, which challenge)
travels with the client as an opaque token instead of living in a server-side
table. The token is a Fernet token: AES-CBC encrypted and HMAC-SHA256
authenticated with a process-wide symmetric key, and timestamped so stale
ceremonies can be rejected.

Because the token is held by the client, nothing needs to be evicted on the
server when a ceremony is abandoned. Replay of a token that was already read
is refused through a small registry of consumed nonces that is pruned as
tokens age past the TTL; the transport additionally clears the cookie that
carries the token.

Usage:
    from authn.challenges import ChallengeSession, CeremonyKind

    sessions = ChallengeSession(ttl=300)
    token = sessions.issue(CeremonyKind.REGISTRATION, account.id, challenge)
    pending = sessions.consume(token, CeremonyKind.REGISTRATION)
"""

import base64
import json
import logging
import secrets
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from authn.errors import (
    ExpiredCeremony,
    InvalidCeremony,
    ReplayedCeremony,
    TamperedToken,
    WrongCeremonyKind,
)

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1


class CeremonyKind(str, Enum):
    """The two ceremonies a challenge can be bound to."""

    REGISTRATION = "registration"
    LOGIN = "login"


@dataclass(frozen=True)
class PendingChallenge:
    """
    State of a ceremony between its begin and finish calls.

    Attributes:
        kind: Ceremony the challenge was issued for.
        account_id: Account the challenge is bound to.
        challenge: Server-chosen random challenge bytes.
        created_at: When the challenge was issued (UTC).
        nonce: Single-use marker; a nonce is accepted at most once.
    """

    kind: CeremonyKind
    account_id: uuid.UUID
    challenge: bytes
    created_at: datetime
    nonce: str

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "v": TOKEN_VERSION,
                "kind": self.kind.value,
                "account_id": str(self.account_id),
                "challenge": base64.urlsafe_b64encode(self.challenge).decode("ascii"),
                "created_at": self.created_at.timestamp(),
                "nonce": self.nonce,
            },
            separators=(",", ":"),
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "PendingChallenge":
        """
        Parse a decrypted token payload.

        Raises:
            InvalidCeremony: If the payload is not a well formed challenge.
        """
        try:
            payload = json.loads(data)
            if payload.get("v") != TOKEN_VERSION:
                raise ValueError(f"unsupported token version {payload.get('v')!r}")
            return cls(
                kind=CeremonyKind(payload["kind"]),
                account_id=uuid.UUID(payload["account_id"]),
                challenge=base64.urlsafe_b64decode(payload["challenge"]),
                created_at=datetime.fromtimestamp(payload["created_at"], tz=timezone.utc),
                nonce=str(payload["nonce"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidCeremony(f"malformed ceremony token: {e}") from e


class ChallengeSession:
    """
    Issues and consumes encrypted, single-use ceremony tokens.

    Attributes:
        ttl: Maximum token age in seconds.
    """

    def __init__(self, key: Optional[Union[str, bytes]] = None, ttl: float = 300):
        """
        Initialize the session codec.

        Args:
            key: urlsafe base64 encoded 32-byte Fernet key. A fresh key is
                 generated when omitted; in-flight ceremonies do not survive
                 a key change.
            ttl: Maximum token age in seconds, at least 1. Consumed nonces
                 are remembered for this long.

        Raises:
            ValueError: If the key is not a valid Fernet key or the TTL is
                        missing or below one second.
        """
        if ttl is None or ttl < 1:
            raise ValueError(f"challenge ttl must be at least 1 second, got {ttl!r}")

        if key is None:
            key = self.generate_key()
            logger.info("Generated ephemeral challenge session key")

        self._fernet = Fernet(key)
        self.ttl = ttl

        self._lock = threading.Lock()
        self._consumed: "OrderedDict[str, float]" = OrderedDict()

    @staticmethod
    def generate_key() -> bytes:
        """Generate a new random session key."""
        return Fernet.generate_key()

    def issue(self, kind: CeremonyKind, account_id: uuid.UUID, challenge: bytes) -> str:
        """
        Create a token for a new pending ceremony.

        Args:
            kind: Ceremony being started.
            account_id: Account the ceremony is bound to.
            challenge: Challenge bytes produced by the engine.

        Returns:
            Opaque URL-safe token to hand to the client.
        """
        pending = PendingChallenge(
            kind=CeremonyKind(kind),
            account_id=account_id,
            challenge=challenge,
            created_at=datetime.now(timezone.utc),
            nonce=secrets.token_hex(16),
        )
        return self._fernet.encrypt(pending.to_json()).decode("ascii")

    def consume(self, token: Optional[str], expected_kind: CeremonyKind) -> PendingChallenge:
        """
        Decrypt, authenticate and burn a ceremony token.

        Any token that authenticates is marked consumed before its kind is
        checked, so presenting a token to the wrong ceremony also uses it up.

        Args:
            token: Token previously returned by issue().
            expected_kind: Ceremony the caller is finishing.

        Returns:
            The PendingChallenge carried by the token.

        Raises:
            InvalidCeremony: If no token was supplied or its payload is malformed.
            TamperedToken: If the token fails authentication.
            ExpiredCeremony: If the token is older than the TTL.
            ReplayedCeremony: If the token was already consumed.
            WrongCeremonyKind: If the token belongs to a different ceremony.
        """
        if not token:
            raise InvalidCeremony()

        data = self._decrypt(token)
        pending = PendingChallenge.from_json(data)

        self._mark_consumed(pending.nonce)

        if pending.kind != CeremonyKind(expected_kind):
            raise WrongCeremonyKind(
                f"expected a {CeremonyKind(expected_kind).value} ceremony, "
                f"got {pending.kind.value}"
            )

        return pending

    def _decrypt(self, token: str) -> bytes:
        try:
            raw = token.encode("ascii") if isinstance(token, str) else token
        except UnicodeEncodeError:
            raise TamperedToken()

        try:
            return self._fernet.decrypt(raw, ttl=int(self.ttl))
        except InvalidToken:
            pass

        # Distinguish an expired but authentic token from a forged one.
        try:
            self._fernet.decrypt(raw)
        except InvalidToken:
            pass
        else:
            raise ExpiredCeremony()

        raise TamperedToken()

    def _mark_consumed(self, nonce: str) -> None:
        now = time.time()
        with self._lock:
            # Entries are in consume order; a nonce older than the TTL belongs
            # to a token that can no longer be decrypted.
            cutoff = now - self.ttl
            while self._consumed:
                oldest = next(iter(self._consumed))
                if self._consumed[oldest] >= cutoff:
                    break
                self._consumed.popitem(last=False)

            if nonce in self._consumed:
                raise ReplayedCeremony()
            self._consumed[nonce] = now

    def __len__(self) -> int:
        """Number of consumed nonces currently remembered."""
        with self._lock:
            return len(self._consumed)
