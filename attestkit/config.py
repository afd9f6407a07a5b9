"""Configuration file loading and validation."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List

from .models import FULCIO_URL, REKOR_URL, TSASERVER_URL, Endpoints

CONFIG_DIR = ".attestkit"
CONFIG_FILE = "config.yaml"

ENV_FULCIO_URL = "ATTESTKIT_FULCIO_URL"
ENV_REKOR_URL = "ATTESTKIT_REKOR_URL"
ENV_TSA_URL = "ATTESTKIT_TSA_URL"
ENV_COSIGN_PATH = "ATTESTKIT_COSIGN_PATH"

ENDPOINT_KEYS = ("fulcio_url", "rekor_url", "tsa_server_url")


class ConfigError(Exception):
    """Configuration validation error."""
    pass


class SigningConfig:
    """Configuration for signing and verification runs."""

    def __init__(self, data: Dict[str, Any]):
        """
        Initialize configuration from dictionary.

        Args:
            data: Configuration dictionary from YAML
        """
        self.data = data
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name, {})
        if not isinstance(section, dict):
            raise ConfigError(f"{name} must be a dictionary")
        return section

    def _validate(self) -> None:
        """Validate configuration schema."""
        endpoints = self._section("endpoints")
        for key, value in endpoints.items():
            if key not in ENDPOINT_KEYS:
                raise ConfigError(f"endpoints.{key} is not a known endpoint")
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"endpoints.{key} must be a string")
        if "fulcio_url" in endpoints and not endpoints["fulcio_url"]:
            raise ConfigError("endpoints.fulcio_url cannot be empty")

        cosign = self._section("cosign")
        if "bin_path" in cosign and not isinstance(cosign["bin_path"], str):
            raise ConfigError("cosign.bin_path must be a string")

        imagetools = self._section("imagetools")
        if "command" in imagetools:
            command = imagetools["command"]
            if (
                not isinstance(command, list)
                or not command
                or not all(isinstance(c, str) for c in command)
            ):
                raise ConfigError("imagetools.command must be a non-empty list of strings")

        verify = self._section("verify")
        if "retries" in verify:
            retries = verify["retries"]
            if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
                raise ConfigError("verify.retries must be a positive integer")
        if "retry_on_manifest_unknown" in verify:
            if not isinstance(verify["retry_on_manifest_unknown"], bool):
                raise ConfigError("verify.retry_on_manifest_unknown must be boolean")
        if "certificate_identity_regexp" in verify:
            if not isinstance(verify["certificate_identity_regexp"], str):
                raise ConfigError("verify.certificate_identity_regexp must be a string")

        if "no_transparency_log" in self.data:
            if not isinstance(self.data["no_transparency_log"], (bool, type(None))):
                raise ConfigError("no_transparency_log must be boolean")

    def endpoints(self) -> Endpoints:
        """
        Get Sigstore endpoints, defaulting to the public good instance.

        An explicit null for ``rekor_url`` or ``tsa_server_url`` disables
        that service.

        Returns:
            Endpoints instance
        """
        section = self.data.get("endpoints", {})
        return Endpoints(
            fulcio_url=section.get("fulcio_url", FULCIO_URL),
            rekor_url=section.get("rekor_url", REKOR_URL),
            tsa_server_url=section.get("tsa_server_url", TSASERVER_URL),
        )

    @property
    def cosign_path(self) -> str:
        return self.data.get("cosign", {}).get("bin_path", "cosign")

    @property
    def imagetools_command(self) -> Optional[List[str]]:
        return self.data.get("imagetools", {}).get("command")

    @property
    def no_transparency_log(self) -> Optional[bool]:
        return self.data.get("no_transparency_log")

    def get_verify_config(self) -> Dict[str, Any]:
        """
        Get verification settings.

        Returns:
            Verify configuration dictionary
        """
        return self.data.get("verify", {})

    def apply_environment_overrides(self) -> "SigningConfig":
        """
        Apply environment variable overrides.

        Environment variables:
        - ATTESTKIT_FULCIO_URL: Override Fulcio URL
        - ATTESTKIT_REKOR_URL: Override Rekor URL
        - ATTESTKIT_TSA_URL: Override timestamp authority URL
        - ATTESTKIT_COSIGN_PATH: Override cosign binary path

        Returns:
            New SigningConfig with environment overrides applied
        """
        merged = copy.deepcopy(self.data)

        for env_name, key in (
            (ENV_FULCIO_URL, "fulcio_url"),
            (ENV_REKOR_URL, "rekor_url"),
            (ENV_TSA_URL, "tsa_server_url"),
        ):
            value = os.getenv(env_name)
            if value:
                merged.setdefault("endpoints", {})[key] = value

        cosign_path = os.getenv(ENV_COSIGN_PATH)
        if cosign_path:
            merged.setdefault("cosign", {})["bin_path"] = cosign_path

        return SigningConfig(merged)


def load_config(config_path: str) -> SigningConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        SigningConfig instance

    Raises:
        ConfigError: If config file is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    return SigningConfig(data)


def find_default_config() -> Optional[Path]:
    """
    Find default configuration file.

    Searches for .attestkit/config.yaml in:
    1. Current directory
    2. Parent directories up to git root
    3. Home directory

    Returns:
        Path to config file, or None if not found
    """
    current = Path.cwd()
    while True:
        config_path = current / CONFIG_DIR / CONFIG_FILE
        if config_path.exists():
            return config_path

        if (current / ".git").exists():
            break

        parent = current.parent
        if parent == current:
            break
        current = parent

    home_config = Path.home() / CONFIG_DIR / CONFIG_FILE
    if home_config.exists():
        return home_config

    return None


def load_default_config() -> Optional[SigningConfig]:
    """
    Load configuration from default location.

    Returns:
        SigningConfig if found, None otherwise
    """
    config_path = find_default_config()
    if config_path:
        return load_config(str(config_path))
    return None
