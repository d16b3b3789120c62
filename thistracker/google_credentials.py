"""Helpers for loading and validating the principal's Google OAuth credentials."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from thistracker.errors import AuthRequiredError

__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "SCOPES",
    "authorize",
    "credentials_from_access_token",
    "load_authorized_user_data",
    "load_user_credentials",
]

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
)

REQUIRED_FIELDS: Iterable[str] = (
    "client_id",
    "client_secret",
    "refresh_token",
    "token_uri",
)


class CredentialsFileInvalidError(AuthRequiredError):
    """Raised when a stored token JSON file is missing required data."""


def _load_json(path: Path) -> Mapping[str, object]:
    try:
        with path.open("r", encoding="utf-8-sig") as handle:
            raw = handle.read()
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Unable to read token file: {exc}") from exc

    payload_text = raw.lstrip("\ufeff").strip()
    if not payload_text:
        raise CredentialsFileInvalidError("Token file is empty.")

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Token file is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise CredentialsFileInvalidError("Token file must contain a JSON object.")
    return payload


def _validate_payload(payload: Mapping[str, object]) -> Dict[str, object]:
    data: Dict[str, object] = dict(payload)
    missing: list[str] = []

    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            missing.append(field)

    if missing:
        ordered = ", ".join(sorted(dict.fromkeys(missing)))
        raise CredentialsFileInvalidError(f"Token file is missing fields: {ordered}")
    return data


def load_authorized_user_data(path: Path) -> Dict[str, object]:
    """Return validated authorized-user token data without modifying ``path``."""

    return _validate_payload(_load_json(Path(path)))


def _save_credentials(credentials: Credentials, token_path: Path) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    with token_path.open("w", encoding="utf-8") as handle:
        handle.write(credentials.to_json())


def load_user_credentials(path: Path, scopes: Optional[Sequence[str]] = None) -> Credentials:
    """Return credentials for the stored token at ``path``, refreshing them when expired.

    Raises :class:`AuthRequiredError` when no usable token exists; the caller
    is expected to run :func:`authorize` in that case.
    """

    token_path = Path(path)
    if not token_path.exists():
        raise AuthRequiredError(f"No stored credentials at {token_path}; run 'thistracker login'.")

    payload = load_authorized_user_data(token_path)
    credentials = Credentials.from_authorized_user_info(payload, list(scopes or SCOPES))
    if credentials.valid:
        return credentials

    if credentials.refresh_token:
        try:
            credentials.refresh(Request())
        except RefreshError as exc:
            raise AuthRequiredError(f"Stored credentials could not be refreshed: {exc}") from exc
        _save_credentials(credentials, token_path)
        logger.info("Refreshed stored credentials at %s", token_path)
        return credentials

    raise AuthRequiredError("Stored credentials are expired and cannot be refreshed.")


def credentials_from_access_token(token: str) -> Credentials:
    """Wrap a bare OAuth access token supplied by the caller."""

    if not token or not token.strip():
        raise AuthRequiredError("An access token is required.")
    return Credentials(token=token.strip())


def authorize(
    client_secret_path: Path,
    token_path: Path,
    scopes: Optional[Sequence[str]] = None,
) -> Credentials:
    """Run the installed-app consent flow and persist the resulting token."""

    secret_path = Path(client_secret_path)
    if not os.path.exists(secret_path):
        raise FileNotFoundError(f"Client secret file not found: {secret_path}")

    flow = InstalledAppFlow.from_client_secrets_file(str(secret_path), list(scopes or SCOPES))
    credentials = flow.run_local_server(port=0)
    _save_credentials(credentials, Path(token_path))
    logger.info("Stored new credentials at %s", token_path)
    return credentials
