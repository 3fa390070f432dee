"""
Runtime configuration for the pruner.

The credential is resolved once, up front, and carried in ``PrunerConfig``;
nothing downstream reads the environment or the Snyk CLI configuration.
"""

import datetime
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import AuthError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "SNYK-US-01"
DEFAULT_API_VERSION = "2024-10-15"
DELETE_COUNTDOWN = 3  # seconds

REGION_URLS = {
    "SNYK-US-01": "https://api.snyk.io",
    "SNYK-US-02": "https://api.us.snyk.io",
    "SNYK-EU-01": "https://api.eu.snyk.io",
    "SNYK-AU-01": "https://api.au.snyk.io",
}

SNYK_CONFIGSTORE = Path.home() / ".config" / "configstore" / "snyk.json"


@dataclass(frozen=True)
class PrunerConfig:
    token: str
    auth_scheme: str = "token"
    region: str = DEFAULT_REGION
    api_version: str = DEFAULT_API_VERSION
    request_interval: float = 0.5
    delete_countdown: int = DELETE_COUNTDOWN
    countdown_tick: float = 1.0
    fail_fast: bool = False
    dry_run: bool = False
    tz: Optional[datetime.tzinfo] = None


def _token_from_configstore(path: Path) -> Optional[Tuple[str, str]]:
    """Read the token the Snyk CLI stored after 'snyk auth'."""
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read Snyk CLI configuration {path}: {e}")
        return None

    oauth = data.get('INTERNAL_OAUTH_TOKEN_STORAGE')
    if oauth:
        try:
            access_token = json.loads(oauth).get('access_token')
        except (TypeError, ValueError):
            access_token = None
        if access_token:
            return access_token, "bearer"

    if data.get('api'):
        return data['api'], "token"
    return None


def resolve_token(explicit: Optional[str] = None, configstore: Path = SNYK_CONFIGSTORE) -> Tuple[str, str]:
    """
    Find the credential to use, returning ``(token, auth_scheme)``.

    Order: the explicit --token value, the SNYK_TOKEN environment variable,
    then the Snyk CLI configstore (OAuth access token first, API token second).
    """
    if explicit:
        return explicit, "token"

    env_token = os.environ.get('SNYK_TOKEN')
    if env_token:
        logger.info("Using Snyk token from the SNYK_TOKEN environment variable")
        return env_token, "token"

    found = _token_from_configstore(configstore)
    if found:
        logger.info(f"Using Snyk credential from {configstore}")
        return found

    raise AuthError(
        "No Snyk credential found. Pass --token, set SNYK_TOKEN, or run 'snyk auth'."
    )
