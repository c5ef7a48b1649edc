from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from dateutil import parser as date_parser

from hunt_analyzer.config import Settings, configured_value

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/v2/oauth/authorize"
TOKEN_PATH = "/v2/oauth/token"
SETUP_STATE_PREFIX = "internal-setup-"


def _parse_expiry(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = date_parser.parse(str(raw))
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_expired(record: dict[str, Any], now: Optional[datetime] = None) -> bool:
    expires_at = _parse_expiry(record.get("expires_at"))
    if expires_at is None:
        return False
    return expires_at <= (now or datetime.now(timezone.utc))


def _token_record(payload: dict[str, Any], previous: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    expires_at = payload.get("expires_at")
    if not expires_at and payload.get("expires_in"):
        expires_at = (now + timedelta(seconds=int(payload["expires_in"]))).isoformat()
    previous = previous or {}
    return {
        "access_token": payload.get("access_token"),
        "refresh_token": payload.get("refresh_token") or previous.get("refresh_token"),
        "expires_at": expires_at,
        "token_type": payload.get("token_type", "Bearer"),
        "scope": payload.get("scope") or previous.get("scope"),
        "created_at": now.isoformat(),
    }


class CredentialProvider:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.developer_token = configured_value(settings.ph_developer_token)
        self.client_id = configured_value(settings.ph_client_id)
        self.client_secret = configured_value(settings.ph_client_secret)
        self.token_file = settings.token_file
        self.redirect_url = settings.redirect_url
        self.token_host = settings.ph_token_host.rstrip("/")
        self.timeout = settings.request_timeout_sec
        self._transport = transport

        if self.developer_token:
            logger.info("Product Hunt developer token configured")
        elif self.oauth_configured:
            logger.info("Product Hunt OAuth client configured")
        else:
            logger.warning(
                "Product Hunt credentials not configured. Set PH_DEVELOPER_TOKEN or PH_CLIENT_ID/PH_CLIENT_SECRET."
            )

    @property
    def oauth_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def configured(self) -> bool:
        return bool(self.developer_token) or self.oauth_configured

    @property
    def auth_method(self) -> str:
        return "developer_token" if self.developer_token else "oauth"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _read_record(self) -> Optional[dict[str, Any]]:
        if not self.token_file.exists():
            return None
        try:
            record = json.loads(self.token_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Error reading stored token: %s", exc)
            return None
        return record if isinstance(record, dict) else None

    def store_record(self, record: dict[str, Any]) -> None:
        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        self.token_file.write_text(json.dumps(record, indent=2), encoding="utf-8")
        logger.info("OAuth token stored")

    async def get_credential(self) -> Optional[str]:
        if self.developer_token:
            return self.developer_token

        record = self._read_record()
        if record is None:
            logger.info("No stored OAuth token found")
            return None
        if _is_expired(record):
            logger.info("Token expired, attempting to refresh")
            return await self._refresh(record)
        return record.get("access_token") or None

    async def _refresh(self, record: dict[str, Any]) -> Optional[str]:
        refresh_token = record.get("refresh_token")
        if not self.oauth_configured or not refresh_token:
            return None
        try:
            payload = await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error refreshing token: %s", exc)
            return None
        refreshed = _token_record(payload, previous=record)
        self.store_record(refreshed)
        return refreshed.get("access_token") or None

    async def _token_request(self, body: dict[str, Any]) -> dict[str, Any]:
        body = {"client_id": self.client_id, "client_secret": self.client_secret, **body}
        async with self._client() as client:
            response = await client.post(
                f"{self.token_host}{TOKEN_PATH}",
                json=body,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise ValueError("Token endpoint returned no access_token")
        return payload

    def authorize_url(self, state: Optional[str] = None) -> str:
        if not self.oauth_configured:
            raise ValueError("Product Hunt OAuth not configured")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": "public private",
            "state": state or f"{SETUP_STATE_PREFIX}{int(datetime.now(timezone.utc).timestamp() * 1000)}",
        }
        return f"{self.token_host}{AUTHORIZE_PATH}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        if not self.oauth_configured:
            raise ValueError("Product Hunt OAuth not configured")
        payload = await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_url}
        )
        record = _token_record(payload)
        self.store_record(record)
        return record

    def token_info(self) -> dict[str, Any]:
        if self.developer_token:
            return {"hasToken": True, "authMethod": "developer_token", "isExpired": False, "configured": True}

        record = self._read_record()
        if record is None:
            return {
                "hasToken": False,
                "authMethod": "oauth",
                "isExpired": False,
                "configured": self.oauth_configured,
                "error": "No token stored",
            }
        return {
            "hasToken": bool(record.get("access_token")),
            "authMethod": "oauth",
            "scope": record.get("scope"),
            "expires_at": record.get("expires_at"),
            "created_at": record.get("created_at"),
            "isExpired": _is_expired(record),
            "configured": self.oauth_configured,
        }
