"""
OAuth credentials for the Gmail API, with optional interactive re-authorization.

Operations downstream only ever see an authorized Gmail service object; how
the token behind it was obtained is this module's business.
"""

from __future__ import annotations
import errno
import json
import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from mailclean.logging import logger

load_dotenv()

DEFAULT_CLIENT_SECRETS = "./credentials/client_secret.json"


class TokenExpiredError(Exception):
    """Raised when the stored token cannot be refreshed without user interaction."""
    pass


def _save_token(token_file: Path, creds: Credentials) -> None:
    try:
        token_file.write_text(creds.to_json(), encoding="utf-8")
    except OSError as e:
        if e.errno != errno.EROFS:
            raise
        logger.warning(
            f"⚠️  Credentials refreshed but {token_file} is on a read-only file system; "
            f"the token works until it expires"
        )


def reauthorize_token(
    token_path: str,
    scopes: List[str],
    client_secrets_path: Optional[str] = None,
) -> Credentials:
    """
    Run the installed-app OAuth flow in a browser and save the new token.

    Args:
        token_path: Where to write the authorized-user JSON
        scopes: OAuth scopes to request
        client_secrets_path: OAuth client file; defaults to GOOGLE_CLIENT_SECRETS

    Returns:
        Fresh Credentials

    Raises:
        FileNotFoundError: If the client secrets file is missing
    """
    if client_secrets_path is None:
        client_secrets_path = os.getenv("GOOGLE_CLIENT_SECRETS", DEFAULT_CLIENT_SECRETS)

    client_secrets = Path(client_secrets_path)
    if not client_secrets.exists():
        raise FileNotFoundError(
            f"Client secrets file not found: {client_secrets}. "
            f"Set GOOGLE_CLIENT_SECRETS or place client_secret.json in credentials/"
        )

    token_file = Path(token_path)
    token_file.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Starting OAuth authorization for {token_path}; complete it in the browser window")
    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets), scopes)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        logger.error(f"❌ OAuth authorization failed: {e}")
        raise

    if not creds.refresh_token:
        logger.warning(
            "⚠️  No refresh token received; revoke access at "
            "https://myaccount.google.com/permissions and authorize again to get one"
        )

    token_file.write_text(creds.to_json(), encoding="utf-8")
    saved = json.loads(token_file.read_text(encoding="utf-8"))
    if saved.get("refresh_token"):
        logger.info(f"✅ Token saved to {token_path} (includes refresh token)")
    else:
        logger.warning(f"⚠️  Token saved to {token_path} without a refresh token")
    return creds


def ensure_valid_credentials(
    token_path: str,
    scopes: List[str],
    auto_reauthorize: bool = False,
    client_secrets_path: Optional[str] = None,
) -> Credentials:
    """
    Load the stored token, refreshing or re-authorizing it when needed.

    Args:
        token_path: Authorized-user JSON file
        scopes: OAuth scopes required
        auto_reauthorize: Fall back to the browser flow when the token is
            missing or cannot be refreshed; otherwise fail fast
        client_secrets_path: OAuth client file for re-authorization

    Returns:
        Valid Credentials

    Raises:
        FileNotFoundError: If the token file is missing and auto_reauthorize is False
        TokenExpiredError: If refresh fails and auto_reauthorize is False
    """
    token_file = Path(token_path)
    if not token_file.exists():
        if auto_reauthorize:
            logger.warning(f"Token file not found: {token_path}. Starting authorization...")
            return reauthorize_token(token_path, scopes, client_secrets_path)
        raise FileNotFoundError(f"Token file not found: {token_path}")

    creds = Credentials.from_authorized_user_file(str(token_file), scopes)
    if creds.valid:
        return creds

    if not creds.refresh_token:
        logger.warning(f"No refresh token in {token_path}; authorization required")
        if auto_reauthorize:
            return reauthorize_token(token_path, scopes, client_secrets_path)
        raise TokenExpiredError(f"No refresh token in {token_path}. Run 'mailclean login' to authorize.")

    try:
        creds.refresh(Request())
    except RefreshError as e:
        logger.error(f"❌ Token refresh failed for {token_path}: {e}")
        if auto_reauthorize:
            logger.info("🔄 Attempting re-authorization...")
            return reauthorize_token(token_path, scopes, client_secrets_path)
        raise TokenExpiredError(
            f"Token refresh failed for {token_path}. Run 'mailclean login' to authorize again."
        ) from e

    _save_token(token_file, creds)
    logger.debug(f"✅ Credentials refreshed for {token_path}")
    return creds


def build_gmail_service(credentials: Credentials) -> Any:
    """Authorized Gmail v1 API resource."""
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


class CredentialProvider:
    """
    Hands out Gmail credentials on demand.

    `interactive=True` may open a browser for the OAuth flow; with
    `interactive=False` a missing or dead token fails fast.
    """

    def __init__(
        self,
        token_path: str,
        scopes: List[str],
        client_secrets_path: Optional[str] = None,
    ) -> None:
        self.token_path = token_path
        self.scopes = list(scopes)
        self.client_secrets_path = client_secrets_path

    def get_credential(self, interactive: bool = False) -> Credentials:
        return ensure_valid_credentials(
            self.token_path,
            self.scopes,
            auto_reauthorize=interactive,
            client_secrets_path=self.client_secrets_path,
        )

    def login(self) -> Credentials:
        """Force a fresh browser authorization."""
        return reauthorize_token(self.token_path, self.scopes, self.client_secrets_path)

    def service(self, interactive: bool = False) -> Any:
        return build_gmail_service(self.get_credential(interactive))
