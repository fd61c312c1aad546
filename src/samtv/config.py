"""Configuration management for the samtv client."""

import binascii
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import yaml

from samtv.errors import ConfigurationError

SESSION_KEY_HEX_LENGTH = 32  # 16-byte key
DEFAULT_CONFIG_PATH = Path("~/.config/samtv/config.yaml")

FileReader = Callable[[Path], dict[str, Any] | None]


@dataclass
class TimeoutConfig:
    """Network timeouts (seconds)."""

    handshake_timeout: float = 60.0  # InitSession wait for the handshake ack
    read_timeout: float = 60.0  # Channel read deadline, refreshed by keepalives
    write_timeout: float = 15.0
    reply_timeout: float = 5.0  # SendKey wait for the device reply
    request_timeout: float = 10.0  # HTTP requests


@dataclass
class PairingConfig:
    """Pairing backend configuration."""

    backend: str = "local"  # "local" or "remote"
    key_exchange: str | None = None  # module:attribute of a KeyExchange
    remote_url: str | None = None
    remote_user: str = "orchestrator"
    remote_password: str = "password"
    verify_ssl: bool = False  # Exchange service uses a self-signed certificate


@dataclass
class Config:
    """Client configuration."""

    server: str | None = None
    device_uuid: str | None = None
    session_key: str = ""  # 32 hex chars
    session_id: int = -1
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    pairing: PairingConfig = field(default_factory=PairingConfig)

    def session_key_bytes(self) -> bytes | None:
        """Decode the saved session key.

        Returns:
            16-byte key, or None if no key is configured.

        Raises:
            ConfigurationError: If the key is not a 32-char hex string.
        """
        if not self.session_key:
            return None
        if len(self.session_key) != SESSION_KEY_HEX_LENGTH:
            raise ConfigurationError(
                "Invalid session key, should be a 32-character hex string"
            )
        try:
            return binascii.unhexlify(self.session_key)
        except binascii.Error as e:
            raise ConfigurationError(f"Cannot convert hex key string: {e}") from e

    @property
    def is_paired(self) -> bool:
        """True if a session key and a positive session id are configured."""
        return bool(self.session_key) and self.session_id > 0


def get_config_path(custom_path: Path | None = None) -> Path:
    """Return custom_path, or the per-user default location."""
    if custom_path is not None:
        return custom_path
    return DEFAULT_CONFIG_PATH.expanduser()


def _read_yaml(path: Path) -> dict[str, Any] | None:
    """Load the YAML document at path; None if missing, empty or unparsable."""
    try:
        return yaml.safe_load(path.read_text())
    except (FileNotFoundError, yaml.YAMLError):
        return None


def _from_mapping(cls, data: Any):
    """Build a config dataclass from a mapping, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def load_config(path: Path | None = None, file_reader: FileReader | None = None) -> Config:
    """Load configuration from file.

    Sections missing from the file keep their defaults.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.
    """
    data = (file_reader or _read_yaml)(get_config_path(path))
    if not isinstance(data, dict):
        return Config()

    top_level = {k: v for k, v in data.items() if k not in ("timeouts", "pairing")}
    config = _from_mapping(Config, top_level)
    config.timeouts = _from_mapping(TimeoutConfig, data.get("timeouts"))
    config.pairing = _from_mapping(PairingConfig, data.get("pairing"))

    # Hand-edited files may quote the id or leave the key blank
    config.session_key = str(config.session_key or "")
    try:
        config.session_id = int(config.session_id or Config.session_id)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid session_id {config.session_id!r}: {e}") from e
    return config


def save_session_data(
    path: Path | None,
    device_uuid: str,
    session_key: str,
    session_id: int,
) -> Path:
    """Store paired session data in the config file.

    Other keys already present in the file are preserved.

    Returns:
        Path written.
    """
    config_path = get_config_path(path)
    data = _read_yaml(config_path)
    if not isinstance(data, dict):
        data = {}

    data.update(device_uuid=device_uuid, session_key=session_key, session_id=session_id)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.safe_dump(data, default_flow_style=False))
    return config_path
