"""
Configuration Management Module

This module provides a centralized way to load and access configuration settings
from the config.yaml file. It uses the Singleton pattern to ensure only one
configuration instance exists throughout the application.

Values missing from the YAML file fall back to DEFAULT_CONFIG, so a partial
config.yaml (or one that only overrides a couple of keys) is valid.

Usage:
    from authn.config import get_config
    config = get_config()
    webauthn_config = config["webauthn"]
"""

import copy
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "bind_addr": "127.0.0.1:8000",
        "maintenance": False,
        "allow_origins": ["http://localhost:8000"],
        "shutdown_timeout": 35.0,
        "tls": {
            "use_tls": False,
            "cert_file": "tmp/server.crt",
            "key_file": "tmp/server.key",
        },
    },
    "webauthn": {
        "rp_id": "localhost",
        "display_name": "Yubikey Authn Debugger",
        "origins": ["http://localhost:8000"],
        "attestation": "none",
        "user_verification": "preferred",
    },
    "session": {
        "secret_key": None,
        "challenge_ttl": 300,
        "cookie_name": "webauthn-session",
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        config_path = current_dir / "config.yaml"
        if config_path.exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge ``overrides`` on top of ``base``.

    Nested dictionaries are merged key by key; any other value in
    ``overrides`` replaces the one in ``base``. Neither input is modified.

    Args:
        base: Configuration providing the defaults.
        overrides: Configuration whose values win.

    Returns:
        A new merged dictionary.
    """
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check values that have no usable fallback.

    Args:
        config: Merged configuration.

    Returns:
        The same configuration, unchanged.

    Raises:
        ValueError: If session.challenge_ttl is not a number of at least 1.
    """
    ttl = config.get("session", {}).get("challenge_ttl")
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl < 1:
        raise ValueError(
            f"session.challenge_ttl must be a number of seconds >= 1, got {ttl!r}"
        )
    return config


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file.
                     If not provided, uses the default config.yaml in project root.

    Returns:
        Dict containing all configuration values, merged over DEFAULT_CONFIG.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
        ValueError: If the file does not contain a mapping or a value is invalid.
    """
    if config_path is None:
        project_root = get_project_root()
        config_path = project_root / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")

    return validate_config(merge_config(DEFAULT_CONFIG, loaded))


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    This is the main function you should use to access configuration.

    Args:
        reload: If True, forces reloading the configuration from disk.
                Useful for testing or if the config file has changed.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        rp_id = config["webauthn"]["rp_id"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def set_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace the configuration singleton (used by the CLI --config option).

    Returns:
        The installed configuration, merged over DEFAULT_CONFIG.

    Raises:
        ValueError: If a value is invalid.
    """
    global _config_instance
    _config_instance = validate_config(merge_config(DEFAULT_CONFIG, config))
    return _config_instance


def get_section(section_name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "server", "webauthn", "session")
        config: Configuration to read from. Defaults to the singleton.

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    if config is None:
        config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


def get_server_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get HTTP server configuration."""
    return get_section("server", config)


def get_webauthn_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get relying party configuration."""
    return get_section("webauthn", config)


def get_session_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get challenge session configuration."""
    return get_section("session", config)


def get_logging_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get logging configuration."""
    return get_section("logging", config)


def parse_bind_addr(bind_addr: str) -> Tuple[str, int]:
    """
    Split a bind address into host and port.

    Accepts "host:port", ":port" (all interfaces) and "[v6]:port".

    Args:
        bind_addr: The address to parse, e.g. "127.0.0.1:0" or ":443".

    Returns:
        Tuple of (host, port).

    Raises:
        ValueError: If the address has no port or the port is not a number.
    """
    if ":" not in bind_addr:
        raise ValueError(f"bind address {bind_addr!r} is missing a port")

    host, port_str = bind_addr.rsplit(":", 1)
    host = host.strip("[]") or "0.0.0.0"

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"bind address {bind_addr!r} has an invalid port")

    if not 0 <= port <= 65535:
        raise ValueError(f"bind address {bind_addr!r} has an out of range port")

    return host, port


if __name__ == "__main__":
    # Quick test of the config loading
    print("Testing configuration loader...")

    config = get_config()
    print(f"Successfully loaded config with sections: {list(config.keys())}")

    webauthn_config = get_webauthn_config()
    print(f"Relying party: {webauthn_config['rp_id']} ({webauthn_config['display_name']})")
    print(f"Bind address: {get_server_config()['bind_addr']}")
