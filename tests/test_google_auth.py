from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Tuple
from urllib.parse import parse_qs, urlparse

import pytest
from google.auth.exceptions import RefreshError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetdb import google_auth
from sheetdb.config_store import ConfigStore
from sheetdb.errors import AuthenticationRequiredError, ConfigurationError
from sheetdb.google_auth import ClientCredentials, TokenSet

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _store_with_tokens(expires_at: datetime, refresh_token: str = "refresh-1") -> ConfigStore:
    store = ConfigStore(passphrase="passphrase")
    google_auth.save_client_credentials(
        store, ClientCredentials("client-id", "client-secret", "http://localhost/callback")
    )
    google_auth.save_tokens(
        store,
        TokenSet(access_token="access-1", refresh_token=refresh_token, expires_at=_ms(expires_at), scope="s"),
    )
    return store


def test_tokens_and_client_secret_are_stored_encrypted() -> None:
    store = _store_with_tokens(NOW + timedelta(hours=1))

    assert store.get("google_client_id") == "client-id"
    assert store.get("google_client_secret") != "client-secret"
    assert store.get("google_access_token") != "access-1"
    assert store.get("google_refresh_token") != "refresh-1"
    assert store.get("google_token_expires_at") == str(_ms(NOW + timedelta(hours=1)))

    tokens = google_auth.load_tokens(store)
    assert tokens is not None
    assert (tokens.access_token, tokens.refresh_token) == ("access-1", "refresh-1")
    credentials = google_auth.load_client_credentials(store)
    assert credentials == ClientCredentials("client-id", "client-secret", "http://localhost/callback")


def test_token_validity_uses_five_minute_margin() -> None:
    assert google_auth.is_token_valid(TokenSet("a", expires_at=_ms(NOW + timedelta(minutes=6))), NOW)
    assert not google_auth.is_token_valid(TokenSet("a", expires_at=_ms(NOW + timedelta(minutes=4))), NOW)
    assert not google_auth.is_token_valid(TokenSet("a", expires_at=0), NOW)
    assert not google_auth.is_token_valid(None, NOW)


def test_valid_token_is_returned_without_refresh() -> None:
    store = _store_with_tokens(NOW + timedelta(hours=1))

    def refresh(token: str, credentials: ClientCredentials) -> TokenSet:
        raise AssertionError("refresh must not be called")

    assert google_auth.ensure_valid_token(store, refresh=refresh, now=NOW) == "access-1"


def test_expired_token_is_refreshed_and_persisted() -> None:
    store = _store_with_tokens(NOW - timedelta(minutes=1))
    calls: List[Tuple[str, str]] = []

    def refresh(token: str, credentials: ClientCredentials) -> TokenSet:
        calls.append((token, credentials.client_secret))
        return TokenSet(access_token="access-2", expires_at=_ms(NOW + timedelta(hours=1)), scope="s")

    assert google_auth.ensure_valid_token(store, refresh=refresh, now=NOW) == "access-2"
    assert calls == [("refresh-1", "client-secret")]

    tokens = google_auth.load_tokens(store)
    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-1"
    assert google_auth.ensure_valid_token(store, refresh=refresh, now=NOW) == "access-2"
    assert len(calls) == 1


def test_missing_tokens_require_authentication() -> None:
    store = ConfigStore(passphrase="passphrase")

    with pytest.raises(AuthenticationRequiredError):
        google_auth.ensure_valid_token(store, now=NOW)


def test_expired_token_without_refresh_token_requires_authentication() -> None:
    store = _store_with_tokens(NOW - timedelta(minutes=1), refresh_token="")

    with pytest.raises(AuthenticationRequiredError):
        google_auth.ensure_valid_token(store, now=NOW)


def test_expired_token_without_client_credentials_requires_authentication() -> None:
    store = _store_with_tokens(NOW - timedelta(minutes=1))
    store.set("google_client_id", "")

    with pytest.raises(AuthenticationRequiredError, match="client credentials"):
        google_auth.ensure_valid_token(store, now=NOW)


def test_failed_refresh_requires_authentication() -> None:
    store = _store_with_tokens(NOW - timedelta(minutes=1))

    def refresh(token: str, credentials: ClientCredentials) -> TokenSet:
        raise RuntimeError("invalid_grant")

    with pytest.raises(AuthenticationRequiredError, match="invalid_grant"):
        google_auth.ensure_valid_token(store, refresh=refresh, now=NOW)
    assert google_auth.load_tokens(store).access_token == "access-1"


def test_revoke_clears_stored_tokens() -> None:
    store = _store_with_tokens(NOW + timedelta(hours=1))

    google_auth.revoke_tokens(store)

    assert store.get("google_access_token") == ""
    assert store.get("google_refresh_token") == ""
    assert google_auth.load_tokens(store) is None
    with pytest.raises(AuthenticationRequiredError):
        google_auth.ensure_valid_token(store, now=NOW)


def test_refresh_access_token_keeps_old_refresh_token(monkeypatch) -> None:
    def fake_refresh(self, request) -> None:
        self.token = "fresh-access"
        self.expiry = datetime(2030, 1, 1, 0, 0)

    monkeypatch.setattr(google_auth.Credentials, "refresh", fake_refresh)

    tokens = google_auth.refresh_access_token("refresh-1", ClientCredentials("id", "secret"))

    assert tokens.access_token == "fresh-access"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.expires_at == _ms(datetime(2030, 1, 1, tzinfo=timezone.utc))


def test_refresh_access_token_failure(monkeypatch) -> None:
    def fake_refresh(self, request) -> None:
        raise RefreshError("invalid_grant: Token has been expired or revoked.")

    monkeypatch.setattr(google_auth.Credentials, "refresh", fake_refresh)

    with pytest.raises(AuthenticationRequiredError, match="Token refresh failed"):
        google_auth.refresh_access_token("refresh-1", ClientCredentials("id", "secret"))


def test_authorization_url_requests_offline_access() -> None:
    credentials = ClientCredentials("client-id", "client-secret", "http://localhost/callback")

    url = google_auth.build_authorization_url(credentials, state="state-123")

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["client-id"]
    assert query["access_type"] == ["offline"]
    assert query["state"] == ["state-123"]
    assert query["redirect_uri"] == ["http://localhost/callback"]
    assert "https://www.googleapis.com/auth/spreadsheets" in query["scope"][0]


def test_authorization_flow_requires_redirect_uri() -> None:
    with pytest.raises(ConfigurationError):
        google_auth.build_authorization_url(ClientCredentials("client-id", "client-secret"))


def test_exchange_code_failure_requires_authentication(monkeypatch) -> None:
    def fake_fetch_token(self, **kwargs):
        raise OAuth2Error(description="Malformed auth code.")

    monkeypatch.setattr(google_auth.Flow, "fetch_token", fake_fetch_token)
    credentials = ClientCredentials("client-id", "client-secret", "http://localhost/callback")

    with pytest.raises(AuthenticationRequiredError, match="Token exchange failed"):
        google_auth.exchange_code(credentials, "bad-code")


def test_storage_config_and_master_key() -> None:
    store = ConfigStore(passphrase="passphrase")

    google_auth.save_storage_config(
        store,
        "r2",
        bucket_name="files",
        account_id="account",
        access_key_id="key-id",
        secret_access_key="key-secret",
    )
    google_auth.save_master_key(store, "master")

    assert store.get("file_storage_type") == "r2"
    assert store.get("r2_bucket_name") == "files"
    assert store.get("r2_secret_access_key") != "key-secret"
    assert store.get_decrypted("r2_access_key_id") == "key-id"
    assert google_auth.load_master_key(store) == "master"

    with pytest.raises(ConfigurationError):
        google_auth.save_storage_config(store, "s3")


def test_selected_spreadsheet_round_trip() -> None:
    store = ConfigStore()
    assert google_auth.load_selected_spreadsheet(store) is None

    google_auth.save_selected_spreadsheet(store, "sheet-123", "Records")

    assert google_auth.load_selected_spreadsheet(store) == "sheet-123"
    assert store.get("selected_sheet_name") == "Records"
