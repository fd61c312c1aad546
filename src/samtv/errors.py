"""Exceptions for the samtv client."""


class SamtvError(Exception):
    """Base exception for all samtv errors."""

    pass


class ConfigurationError(SamtvError):
    """Missing or invalid configuration (device address, session key...)."""

    pass


class TransportError(SamtvError):
    """HTTP bootstrap, channel dial, read or write failure."""

    pass


class HandshakeTimeout(TransportError):
    """The device did not acknowledge the channel handshake in time."""

    pass


class InvalidResponse(SamtvError):
    """Malformed JSON/XML from the device or the pairing service."""

    pass


class PairingRequired(SamtvError):
    """No usable session key/ID; the PIN popup has been requested.

    This is a recoverable condition: complete pairing with the PIN
    displayed on the device.
    """

    pass


class PairingError(SamtvError):
    """Pairing handshake failed."""

    pass


class HandshakeRejected(PairingError):
    """The device hello could not be validated (usually a wrong PIN)."""

    pass


class AckValidationFailed(PairingError):
    """The device acknowledgement did not match the shared secret."""

    pass


class CodecError(SamtvError):
    """Encryption or decryption failed."""

    pass


class InvalidKey(CodecError):
    """Session key has an invalid length."""

    pass


class InvalidLength(CodecError):
    """Ciphertext is not made of full blocks."""

    pass


class InvalidPadding(CodecError):
    """PKCS#7 padding is inconsistent."""

    pass


class CommandError(SamtvError):
    """A remote-control command was not acknowledged."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key


class NoReply(CommandError):
    """No reply from the device within the reply timeout."""

    def __init__(self, key: str) -> None:
        super().__init__(key, "no reply from device")


class UnexpectedReply(CommandError):
    """The device replied with something other than the success body."""

    def __init__(self, key: str, reply: str) -> None:
        super().__init__(key, f"unexpected device reply: {reply!r}")
        self.reply = reply
