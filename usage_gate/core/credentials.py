"""
Access token resolution.

Looks for the assistant's OAuth access token in the environment, the OS
secret store, and the local credential files, in that order. Every failure
falls through to the next source.
"""

import json
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, List, Mapping, Optional

from .errors import CredentialUnavailable

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "ANTHROPIC_ACCESS_TOKEN"
KEYCHAIN_SERVICE = "Claude Code-credentials"
SECRET_STORE_TIMEOUT = 10

_WINDOWS_READ_COMMAND = (
    "[System.Text.Encoding]::UTF8.GetString([System.Convert]::FromBase64String("
    f"(cmdkey /generic:'{KEYCHAIN_SERVICE}' /pass 2>$null)))"
)


def credential_file_paths(home: Optional[Path] = None) -> List[Path]:
    """Credential files checked after the secret store, in order."""
    base = home or Path.home()
    return [
        base / ".claude" / ".credentials.json",
        base / ".claude" / "credentials.json",
        base / ".config" / "claude" / "credentials.json",
    ]


def resolve_token(
    environ: Optional[Mapping[str, str]] = None,
    platform: Optional[str] = None,
    home: Optional[Path] = None,
) -> Optional[str]:
    """Find an access token, or None if there is none anywhere.

    Args:
        environ: Environment mapping (defaults to ``os.environ``)
        platform: ``sys.platform`` override
        home: Home directory override for the credential files

    Returns:
        The access token, or None
    """
    env = os.environ if environ is None else environ
    platform = platform or sys.platform

    token = env.get(TOKEN_ENV_VAR)
    if token:
        return token

    if platform == "darwin":
        try:
            return _token_from_json(_run_secret_store(
                ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"]
            ))
        except CredentialUnavailable as e:
            logger.debug("Keychain lookup failed: %s", e)

    if platform == "win32":
        try:
            return _token_from_json(_run_secret_store(
                ["powershell", "-Command", _WINDOWS_READ_COMMAND]
            ))
        except CredentialUnavailable as e:
            logger.debug("Credential Manager lookup failed: %s", e)

    for path in credential_file_paths(home):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = f.read()
            return _token_from_json(raw)
        except FileNotFoundError:
            continue
        except (OSError, UnicodeDecodeError, CredentialUnavailable) as e:
            logger.debug("Credential file %s unusable: %s", path, e)

    logger.debug("No access token found")
    return None


def _run_secret_store(command: List[str]) -> str:
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=SECRET_STORE_TIMEOUT,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise CredentialUnavailable(f"{command[0]} failed: {e}")
    output = result.stdout.strip()
    if not output:
        raise CredentialUnavailable(f"{command[0]} returned nothing")
    return output


def _token_from_json(raw: str) -> str:
    try:
        creds: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialUnavailable(f"credentials are not JSON: {e}")
    oauth = creds.get("claudeAiOauth") if isinstance(creds, dict) else None
    token = oauth.get("accessToken") if isinstance(oauth, dict) else None
    if not token or not isinstance(token, str):
        raise CredentialUnavailable("no claudeAiOauth.accessToken in credentials")
    return token
