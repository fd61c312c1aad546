"""Pairing module for samtv.

Provides PIN pairing with the device:
- Pairing flow and state machine
- Local and remote key negotiation backends
"""

from .backends import (
    KeyAgreement,
    KeyExchange,
    LocalPairingBackend,
    Negotiation,
    PairingBackend,
    RemotePairingBackend,
    create_backend,
    load_key_exchange,
)
from .flow import Pairer, PairingAttempt, PairingOutcome, PairingState

__all__ = [
    "KeyAgreement",
    "KeyExchange",
    "LocalPairingBackend",
    "Negotiation",
    "PairingAttempt",
    "PairingBackend",
    "PairingOutcome",
    "PairingState",
    "Pairer",
    "RemotePairingBackend",
    "create_backend",
    "load_key_exchange",
]
