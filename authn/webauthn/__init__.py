"""
WebAuthn Engine Package

This package contains the protocol side of the relying party: challenge
generation and attestation/assertion verification.

Components:
    - interfaces: AuthnEngine abstract base class and LoginAssertion
    - fido2_engine: Fido2Engine, the python-fido2 implementation

Usage:
    from authn.webauthn import Fido2Engine, create_engine
"""

from authn.webauthn.interfaces import (
    AuthnEngine,
    ChallengeOptions,
    LoginAssertion,
)
from authn.webauthn.fido2_engine import Fido2Engine, create_engine

__all__ = [
    "AuthnEngine",
    "ChallengeOptions",
    "LoginAssertion",
    "Fido2Engine",
    "create_engine",
]
