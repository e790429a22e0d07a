"""
fido2 Authentication Engine

Concrete AuthnEngine backed by the python-fido2 relying party server. The
engine is stateless: the challenge handed back by the *_challenge methods is
the raw challenge, and the fido2 server state is rebuilt from it when the
response comes back. That is all fido2 keeps between the two calls.

Usage:
    from authn.webauthn.fido2_engine import Fido2Engine

    engine = Fido2Engine(get_webauthn_config())
    options, challenge = engine.new_registration_challenge(account, [])
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorData,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    UserVerificationRequirement,
)

from authn.accounts import Account, Credential
from authn.errors import VerificationFailed
from authn.webauthn.interfaces import AuthnEngine, ChallengeOptions, LoginAssertion

logger = logging.getLogger(__name__)


def _enum_option(enum_cls, name: str, value: Any):
    # fido2's string enums map unknown values to None instead of raising.
    try:
        member = enum_cls(value)
    except ValueError:
        member = None
    if member is None:
        raise ValueError(f"unknown {name} {value!r}")
    return member


class Fido2Engine(AuthnEngine):
    """
    WebAuthn engine using fido2.server.Fido2Server.

    Attributes:
        rp: Relying party entity (id and display name).
        origins: Origins accepted in clientDataJSON. Empty means fido2's
                 default rp id based origin check.
        user_verification: User verification requirement sent to clients.
        server: The underlying Fido2Server.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the engine from the "webauthn" config section.

        Args:
            config: Dictionary with keys:
                - rp_id: Relying party id (a registrable domain)
                - display_name: Relying party name shown by authenticators
                - origins: Allowed origins (optional)
                - attestation: Attestation conveyance preference (optional)
                - user_verification: required / preferred / discouraged

        Raises:
            ValueError: If an enum valued option is not recognised.
        """
        self.rp = PublicKeyCredentialRpEntity(
            id=config["rp_id"],
            name=config.get("display_name") or config["rp_id"],
        )
        self.origins = frozenset(config.get("origins") or [])
        self.user_verification = _enum_option(
            UserVerificationRequirement, "user_verification",
            config.get("user_verification", "preferred"),
        )

        attestation = config.get("attestation")
        if attestation:
            attestation = _enum_option(AttestationConveyancePreference, "attestation", attestation)

        self.server = Fido2Server(
            self.rp,
            attestation=attestation or None,
            verify_origin=self._verify_origin if self.origins else None,
        )

        logger.info(
            f"fido2 engine ready: rp_id={self.rp.id}, origins={sorted(self.origins)}, "
            f"user_verification={self.user_verification.value}"
        )

    def _verify_origin(self, origin: str) -> bool:
        return origin in self.origins

    def _state(self, challenge: bytes) -> Dict[str, Any]:
        # Mirrors the state dict Fido2Server returns from *_begin.
        return {
            "challenge": websafe_encode(challenge),
            "user_verification": self.user_verification,
        }

    @staticmethod
    def _user_entity(account: Account) -> PublicKeyCredentialUserEntity:
        return PublicKeyCredentialUserEntity(
            id=account.id.bytes,
            name=account.address,
            display_name=account.name,
        )

    @staticmethod
    def _descriptors(credential_ids: Sequence[bytes]):
        return [
            PublicKeyCredentialDescriptor(type=PublicKeyCredentialType.PUBLIC_KEY, id=cid)
            for cid in credential_ids
        ]

    def new_registration_challenge(
        self, account: Account, exclude_credential_ids: Sequence[bytes]
    ) -> Tuple[ChallengeOptions, bytes]:
        options, state = self.server.register_begin(
            self._user_entity(account),
            credentials=self._descriptors(exclude_credential_ids),
            user_verification=self.user_verification,
        )
        return dict(options), websafe_decode(state["challenge"])

    def verify_registration(self, challenge: bytes, response: Dict[str, Any]) -> Credential:
        try:
            auth_data = self.server.register_complete(self._state(challenge), response)
        except Exception as e:
            logger.warning(f"Registration verification failed: {e}")
            raise VerificationFailed(f"registration verification failed: {e}") from e

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise VerificationFailed("attestation did not include credential data")

        return Credential(
            id=credential_data.credential_id,
            public_key=credential_data,
            sign_count=auth_data.counter,
        )

    def new_login_challenge(self, account: Account) -> Tuple[ChallengeOptions, bytes]:
        options, state = self.server.authenticate_begin(
            credentials=self._descriptors(account.credential_ids),
            user_verification=self.user_verification,
        )
        return dict(options), websafe_decode(state["challenge"])

    def verify_login(
        self, account: Account, challenge: bytes, response: Dict[str, Any]
    ) -> LoginAssertion:
        credentials = [cred.public_key for cred in account.credentials]

        try:
            matched = self.server.authenticate_complete(
                self._state(challenge), credentials, response
            )
            auth_data = AuthenticatorData(
                _decode_field(response["response"]["authenticatorData"])
            )
        except Exception as e:
            logger.warning(f"Login verification failed for account {account.id}: {e}")
            raise VerificationFailed(f"login verification failed: {e}") from e

        return LoginAssertion(credential_id=matched.credential_id, counter=auth_data.counter)


def _decode_field(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return websafe_decode(value)


def create_engine(config: Optional[Dict[str, Any]] = None) -> Fido2Engine:
    """
    Build the engine from configuration.

    Args:
        config: The "webauthn" config section. If None, uses the default
                config from authn.config.

    Returns:
        A new Fido2Engine.
    """
    if config is None:
        from authn.config import get_webauthn_config
        config = get_webauthn_config()

    return Fido2Engine(config)
