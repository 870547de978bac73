"""Runtime configuration model for harvest runs.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import DEFAULT_TMP_ROOT
from core.errors import HarvestConfigError


@dataclass(frozen=True)
class HarvestConfig:
    """Validated runtime configuration.

    Attributes:
        tmp_root: Local directory where downloads and decompressed artifacts live.
        db_url: Optional document store database URL.
        db_user: Optional document store user name.
        db_password: Optional document store password.
        request_timeout: Optional per-request timeout in seconds.
    """

    tmp_root: Path
    db_url: str | None
    db_user: str | None
    db_password: str | None
    request_timeout: float | None

    @classmethod
    def from_env(cls) -> "HarvestConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            HarvestConfigError: If environment values are invalid.
        """
        tmp_root_value = os.getenv("HARVEST_TMP_ROOT", str(DEFAULT_TMP_ROOT))
        timeout_value = os.getenv("HARVEST_REQUEST_TIMEOUT")
        return cls(
            tmp_root=Path(tmp_root_value).expanduser().resolve(),
            db_url=_optional_env("HARVEST_DB_URL"),
            db_user=_optional_env("HARVEST_DB_USER"),
            db_password=_optional_env("HARVEST_DB_PASSWORD"),
            request_timeout=_parse_request_timeout(timeout_value),
        )

    def db_auth(self) -> tuple[str, str] | None:
        """Return basic-auth credentials when a user is configured."""
        if not self.db_user:
            return None
        return (self.db_user, self.db_password or "")


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_request_timeout(raw_value: str | None) -> float | None:
    """Parse the request timeout environment value.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Parsed positive timeout, or None when unset.

    Raises:
        HarvestConfigError: If value is not a positive number.
    """
    if raw_value is None or not raw_value.strip():
        return None
    try:
        timeout = float(raw_value)
    except ValueError as error:
        raise HarvestConfigError(
            "Invalid HARVEST_REQUEST_TIMEOUT value: "
            f"expected number of seconds, got '{raw_value}'. "
            "Set HARVEST_REQUEST_TIMEOUT to a numeric value."
        ) from error
    if timeout <= 0:
        raise HarvestConfigError(
            f"Invalid HARVEST_REQUEST_TIMEOUT value {timeout}: must be greater than zero."
        )
    return timeout
