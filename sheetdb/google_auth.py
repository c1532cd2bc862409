"""OAuth client credentials, token persistence and refresh for Google APIs.

Every authenticated call goes through :func:`ensure_valid_token` first.  Tokens
are kept in the :class:`~sheetdb.config_store.ConfigStore`; the access and
refresh tokens, the client secret and other secrets are stored encrypted while
expiry, scope and identifiers stay in plain text.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from sheetdb.config_store import ConfigStore
from sheetdb.errors import AuthenticationRequiredError, ConfigurationError
from sheetdb.sheets_client import SCOPES

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# A token is treated as expired this long before its real expiry.
EXPIRY_MARGIN_MS = 5 * 60 * 1000
DEFAULT_EXPIRES_IN = 3600

GOOGLE_CLIENT_ID = "google_client_id"
GOOGLE_CLIENT_SECRET = "google_client_secret"
GOOGLE_REDIRECT_URI = "google_redirect_uri"
GOOGLE_ACCESS_TOKEN = "google_access_token"
GOOGLE_REFRESH_TOKEN = "google_refresh_token"
GOOGLE_TOKEN_EXPIRES_AT = "google_token_expires_at"
GOOGLE_TOKEN_SCOPE = "google_token_scope"
SELECTED_SHEET_ID = "selected_sheet_id"
SELECTED_SHEET_NAME = "selected_sheet_name"
SPREADSHEET_ID = "spreadsheet_id"
FILE_STORAGE_TYPE = "file_storage_type"
GOOGLE_DRIVE_FOLDER_ID = "google_drive_folder_id"
R2_BUCKET_NAME = "r2_bucket_name"
R2_ACCOUNT_ID = "r2_account_id"
R2_ACCESS_KEY_ID = "r2_access_key_id"
R2_SECRET_ACCESS_KEY = "r2_secret_access_key"
MASTER_KEY = "master_key"
SETUP_COMPLETED = "setup_completed"

STORAGE_TYPES = ("google_drive", "r2")


@dataclass
class ClientCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str = ""

    def client_config(self) -> dict:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri] if self.redirect_uri else [],
            }
        }


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str = ""
    # Milliseconds since the epoch.
    expires_at: int = 0
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_credentials(cls, credentials: Credentials, fallback_refresh_token: str = "") -> "TokenSet":
        expiry = credentials.expiry
        if expiry is None:
            expires_at = _epoch_ms(None) + DEFAULT_EXPIRES_IN * 1000
        else:
            # google-auth reports expiry as a naive UTC datetime.
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            expires_at = _epoch_ms(expiry)
        scopes: Sequence[str] = getattr(credentials, "granted_scopes", None) or credentials.scopes or ()
        return cls(
            access_token=credentials.token or "",
            refresh_token=credentials.refresh_token or fallback_refresh_token,
            expires_at=expires_at,
            scope=" ".join(scopes),
        )


def _epoch_ms(moment: Optional[datetime]) -> int:
    moment = moment or datetime.now(timezone.utc)
    return int(moment.timestamp() * 1000)


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------
def save_client_credentials(store: ConfigStore, credentials: ClientCredentials) -> None:
    store.set(GOOGLE_CLIENT_ID, credentials.client_id)
    store.set_encrypted(GOOGLE_CLIENT_SECRET, credentials.client_secret)
    store.set(GOOGLE_REDIRECT_URI, credentials.redirect_uri)


def load_client_credentials(store: ConfigStore) -> Optional[ClientCredentials]:
    client_id = store.get(GOOGLE_CLIENT_ID)
    client_secret = store.get_decrypted(GOOGLE_CLIENT_SECRET)
    if not client_id or not client_secret:
        return None
    return ClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=store.get(GOOGLE_REDIRECT_URI) or "",
    )


def save_tokens(store: ConfigStore, tokens: TokenSet) -> None:
    store.set_encrypted(GOOGLE_ACCESS_TOKEN, tokens.access_token)
    store.set(GOOGLE_TOKEN_EXPIRES_AT, str(int(tokens.expires_at)))
    store.set(GOOGLE_TOKEN_SCOPE, tokens.scope)
    if tokens.refresh_token:
        store.set_encrypted(GOOGLE_REFRESH_TOKEN, tokens.refresh_token)
    logger.info(
        "Saved Google tokens (refresh token: %s, expires at %s)",
        "yes" if tokens.refresh_token else "unchanged",
        datetime.fromtimestamp(tokens.expires_at / 1000, tz=timezone.utc).isoformat(),
    )


def load_tokens(store: ConfigStore) -> Optional[TokenSet]:
    access_token = store.get_decrypted(GOOGLE_ACCESS_TOKEN)
    expires_at = store.get(GOOGLE_TOKEN_EXPIRES_AT)
    if not access_token or not expires_at:
        return None
    try:
        expires_ms = int(expires_at)
    except ValueError:
        logger.warning("Ignoring malformed token expiry %r", expires_at)
        expires_ms = 0
    return TokenSet(
        access_token=access_token,
        refresh_token=store.get_decrypted(GOOGLE_REFRESH_TOKEN) or "",
        expires_at=expires_ms,
        scope=store.get(GOOGLE_TOKEN_SCOPE) or "",
    )


def revoke_tokens(store: ConfigStore) -> None:
    """Forget the stored tokens so the next call requires re-authentication."""

    store.set(GOOGLE_ACCESS_TOKEN, "")
    store.set(GOOGLE_REFRESH_TOKEN, "")
    store.set(GOOGLE_TOKEN_EXPIRES_AT, "")
    store.set(GOOGLE_TOKEN_SCOPE, "")
    logger.info("Google tokens revoked")


def save_selected_spreadsheet(store: ConfigStore, spreadsheet_id: str, name: str = "") -> None:
    store.set(SELECTED_SHEET_ID, spreadsheet_id)
    store.set(SPREADSHEET_ID, spreadsheet_id)
    if name:
        store.set(SELECTED_SHEET_NAME, name)


def load_selected_spreadsheet(store: ConfigStore) -> Optional[str]:
    return store.get(SELECTED_SHEET_ID) or store.get(SPREADSHEET_ID) or None


def save_storage_config(
    store: ConfigStore,
    storage_type: str,
    *,
    drive_folder_id: str = "",
    bucket_name: str = "",
    account_id: str = "",
    access_key_id: str = "",
    secret_access_key: str = "",
) -> None:
    if storage_type not in STORAGE_TYPES:
        raise ConfigurationError(f"Unsupported file storage type: {storage_type}")
    store.set(FILE_STORAGE_TYPE, storage_type)
    if storage_type == "google_drive":
        if drive_folder_id:
            store.set(GOOGLE_DRIVE_FOLDER_ID, drive_folder_id)
        return
    store.set(R2_BUCKET_NAME, bucket_name)
    store.set(R2_ACCOUNT_ID, account_id)
    store.set_encrypted(R2_ACCESS_KEY_ID, access_key_id)
    store.set_encrypted(R2_SECRET_ACCESS_KEY, secret_access_key)


def save_master_key(store: ConfigStore, master_key: str) -> None:
    store.set_encrypted(MASTER_KEY, master_key)


def load_master_key(store: ConfigStore) -> Optional[str]:
    return store.get_decrypted(MASTER_KEY)


# ----------------------------------------------------------------------
# Token lifecycle
# ----------------------------------------------------------------------
def is_token_valid(tokens: Optional[TokenSet], now: Optional[datetime] = None) -> bool:
    if tokens is None or not tokens.expires_at:
        return False
    return tokens.expires_at > _epoch_ms(now) + EXPIRY_MARGIN_MS


def refresh_access_token(refresh_token: str, credentials: ClientCredentials) -> TokenSet:
    """Exchange ``refresh_token`` for a new access token.

    Google does not always return a new refresh token; the old one is kept
    in that case.
    """

    google_credentials = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
    )
    try:
        google_credentials.refresh(Request())
    except GoogleAuthError as exc:
        raise AuthenticationRequiredError(f"Token refresh failed: {exc}") from exc
    return TokenSet.from_credentials(google_credentials, fallback_refresh_token=refresh_token)


RefreshFunc = Callable[[str, ClientCredentials], TokenSet]


def ensure_valid_token(
    store: ConfigStore,
    refresh: RefreshFunc = refresh_access_token,
    now: Optional[datetime] = None,
) -> str:
    """Return a usable access token, refreshing and persisting it if needed."""

    tokens = load_tokens(store)
    if tokens is None:
        raise AuthenticationRequiredError("No Google tokens found. Authentication required.")
    if is_token_valid(tokens, now):
        return tokens.access_token

    if not tokens.refresh_token:
        raise AuthenticationRequiredError("Access token expired and no refresh token is stored.")
    credentials = load_client_credentials(store)
    if credentials is None:
        raise AuthenticationRequiredError("Google client credentials are not configured.")

    logger.info("Access token expired; refreshing")
    try:
        refreshed = refresh(tokens.refresh_token, credentials)
    except AuthenticationRequiredError:
        raise
    except Exception as exc:
        logger.error("Token refresh failed: %s", exc)
        raise AuthenticationRequiredError(
            f"Token refresh failed: {exc}. Re-authentication required."
        ) from exc

    if not refreshed.refresh_token:
        refreshed.refresh_token = tokens.refresh_token
    save_tokens(store, refreshed)
    return refreshed.access_token


# ----------------------------------------------------------------------
# Authorization code flow
# ----------------------------------------------------------------------
def _flow(credentials: ClientCredentials, state: Optional[str] = None) -> Flow:
    if not credentials.redirect_uri:
        raise ConfigurationError("A redirect URI is required for the authorization flow")
    return Flow.from_client_config(
        credentials.client_config(),
        scopes=list(SCOPES),
        state=state,
        redirect_uri=credentials.redirect_uri,
        # The URL and the code exchange happen in separate flows, so no PKCE.
        autogenerate_code_verifier=False,
    )


def build_authorization_url(credentials: ClientCredentials, state: Optional[str] = None) -> str:
    url, _ = _flow(credentials, state).authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
    )
    return url


def exchange_code(credentials: ClientCredentials, code: str) -> TokenSet:
    flow = _flow(credentials)
    try:
        flow.fetch_token(code=code)
    except (OAuth2Error, GoogleAuthError, ValueError) as exc:
        raise AuthenticationRequiredError(f"Token exchange failed: {exc}") from exc
    return TokenSet.from_credentials(flow.credentials)


__all__ = [
    "ClientCredentials",
    "TokenSet",
    "build_authorization_url",
    "ensure_valid_token",
    "exchange_code",
    "is_token_valid",
    "load_client_credentials",
    "load_master_key",
    "load_selected_spreadsheet",
    "load_tokens",
    "refresh_access_token",
    "revoke_tokens",
    "save_client_credentials",
    "save_master_key",
    "save_selected_spreadsheet",
    "save_storage_config",
    "save_tokens",
]
