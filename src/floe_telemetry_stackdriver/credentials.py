"""Project and credential resolution through google-auth.

Resolution order for the project:
    1. Explicit project_id (constructor argument or FLOE_STACKDRIVER_PROJECT_ID)
    2. GOOGLE_CLOUD_PROJECT, then GCLOUD_PROJECT environment variables
    3. The project of the application default credentials

Credentials are either passed in (a google-auth Credentials object, a service
account key file path, or a parsed key file dict) or taken from the
application default credentials.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import google.auth
import structlog
from google.auth import credentials as ga_credentials
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import service_account

from floe_telemetry_stackdriver.errors import ConfigurationError

logger = structlog.get_logger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
PROJECT_ENV_VARS = ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT")

# Accepted forms of explicit credentials
CredentialsSource = ga_credentials.Credentials | str | Path | Mapping[str, Any]


def resolve_project_id(explicit: str | None = None) -> str:
    """Resolve the Google Cloud project to export to.

    Args:
        explicit: Project configured by the caller, if any.

    Returns:
        The project identifier.

    Raises:
        ConfigurationError: If no project can be determined.
    """
    if explicit:
        return explicit

    for var in PROJECT_ENV_VARS:
        value = os.environ.get(var)
        if value:
            logger.debug("project_id_from_environment", variable=var)
            return value

    try:
        _, project_id = google.auth.default()
    except DefaultCredentialsError as e:
        raise ConfigurationError(
            f"no project_id configured and application default credentials "
            f"are unavailable: {e}"
        ) from e

    if not project_id:
        raise ConfigurationError(
            "no project_id configured, set project_id or GOOGLE_CLOUD_PROJECT"
        )
    logger.debug("project_id_from_default_credentials")
    return project_id


def resolve_credentials(
    explicit: CredentialsSource | None = None,
    scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,),
) -> ga_credentials.Credentials:
    """Resolve the credentials used to call the Stackdriver APIs.

    Args:
        explicit: Credentials object, key file path or key file contents.
        scopes: OAuth scopes requested for key-file and default credentials.

    Returns:
        google-auth credentials, not yet refreshed.

    Raises:
        ConfigurationError: If the key file is unreadable or invalid, or no
            application default credentials exist.
    """
    if isinstance(explicit, ga_credentials.Credentials):
        return explicit

    if isinstance(explicit, (str, Path)):
        try:
            return service_account.Credentials.from_service_account_file(
                str(explicit), scopes=list(scopes)
            )
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"cannot load credentials file {explicit}: {e}") from e

    if isinstance(explicit, Mapping):
        try:
            return service_account.Credentials.from_service_account_info(
                dict(explicit), scopes=list(scopes)
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid service account info: {e}") from e

    try:
        credentials, _ = google.auth.default(scopes=list(scopes))
    except DefaultCredentialsError as e:
        raise ConfigurationError(f"no application default credentials: {e}") from e
    logger.debug("credentials_from_default")
    return credentials


__all__ = [
    "CLOUD_PLATFORM_SCOPE",
    "CredentialsSource",
    "PROJECT_ENV_VARS",
    "resolve_credentials",
    "resolve_project_id",
]
