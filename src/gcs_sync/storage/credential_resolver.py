"""GCS Credential Resolver - locates and validates service-account key files.

Resolution order for the key file path:
1. Explicit path (``--credentials`` on the command line)
2. ``CREDENTIALS_PATH`` from the settings file
3. ``GOOGLE_APPLICATION_CREDENTIALS`` environment variable
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from gcs_sync.errors import ConfigurationError

REQUIRED_SERVICE_ACCOUNT_FIELDS = frozenset(
    {"type", "project_id", "private_key", "client_email", "token_uri"}
)


def validate_credentials_dict(credentials_dict: Dict[str, Any]) -> None:
    """Validate that a credentials dictionary is service-account shaped."""
    if not credentials_dict:
        raise ConfigurationError("Credentials cannot be empty")

    missing = REQUIRED_SERVICE_ACCOUNT_FIELDS - set(credentials_dict.keys())
    if missing:
        raise ConfigurationError(
            f"GCS credentials missing required fields: {sorted(missing)}. "
            f"Expected fields: {sorted(REQUIRED_SERVICE_ACCOUNT_FIELDS)}"
        )

    if credentials_dict.get("type") != "service_account":
        raise ConfigurationError(
            f"Credentials type is {credentials_dict.get('type')!r}, expected 'service_account'"
        )


def load_service_account_file(path: Path) -> Dict[str, Any]:
    """
    Load and validate a service-account JSON key file.

    Args:
        path: Path to the key file

    Returns:
        The parsed credentials dictionary

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a service-account key
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Credentials file {path} not found")

    try:
        with open(path, "r", encoding="utf-8") as f:
            credentials = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"Cannot read credentials file {path}: {exc}") from exc

    if not isinstance(credentials, dict):
        raise ConfigurationError(f"{path} is not a valid service account JSON key")

    try:
        validate_credentials_dict(credentials)
    except ConfigurationError as exc:
        raise ConfigurationError(
            f"{path} is not a valid service account JSON key: {exc.message}"
        ) from exc

    return credentials


class GCSCredentialResolver:
    """Resolve the service-account key file path from multiple sources."""

    ENV_VAR = "GOOGLE_APPLICATION_CREDENTIALS"

    @classmethod
    def resolve_path(
        cls,
        explicit: Optional[Path] = None,
        config_value: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> Path:
        """
        Pick the credentials file path in priority order.

        Raises:
            ConfigurationError: If no source provides a path
        """
        log = logger or logging.getLogger(__name__)

        if explicit:
            log.debug("Using credentials path from command line")
            return Path(explicit)

        if config_value:
            log.debug("Using credentials path from settings file")
            return Path(config_value)

        env_value = os.environ.get(cls.ENV_VAR)
        if env_value:
            log.debug(f"Using credentials path from {cls.ENV_VAR}")
            return Path(env_value)

        raise ConfigurationError(
            f"No credentials configured: pass --credentials, set CREDENTIALS_PATH "
            f"in the settings file, or export {cls.ENV_VAR}"
        )

    @classmethod
    def resolve(
        cls,
        explicit: Optional[Path] = None,
        config_value: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> Path:
        """Resolve the path and validate the file it points to."""
        path = cls.resolve_path(explicit, config_value, logger).expanduser().resolve()
        load_service_account_file(path)
        return path
