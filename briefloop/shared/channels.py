import base64
import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from briefloop.shared.logging_utils import error as log_error, info as log_info, mask_address
from briefloop.shared.retry_utils import retry_with_backoff
from briefloop.specs.common.errors import ConfigurationError, ExternalServiceError

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
CALL_STATUS_EVENTS = ["initiated", "ringing", "answered", "completed"]


class ChannelClient(Protocol):
    def send_message(self, to: str, body: str) -> str: ...

    def place_call(
        self,
        to: str,
        callback_url: str,
        status_callback_url: Optional[str] = None,
        timeout_seconds: int = 60,
    ) -> str: ...


class _TransientProviderError(Exception):
    pass


class TwilioChannelClient:
    """Outbound messages and calls through the Twilio REST API.

    Messages are retried on 429/5xx; calls are placed once and never retried.
    """

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        *,
        http: Optional[requests.Session] = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
    ) -> None:
        if not account_sid or not auth_token or not from_number:
            raise ConfigurationError("Twilio credentials are not configured")
        self._sid = account_sid
        self._auth = (account_sid, auth_token)
        self._from = from_number
        self._http = http or requests.Session()
        self._timeout = timeout
        self._retry_attempts = retry_attempts

    def _post(self, resource: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        url = f"{TWILIO_API_BASE}/Accounts/{self._sid}/{resource}.json"
        try:
            resp = self._http.post(url, data=data, auth=self._auth, timeout=self._timeout)
        except requests.RequestException as exc:
            raise _TransientProviderError(str(exc)) from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise _TransientProviderError(f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ExternalServiceError("twilio", f"{resource} rejected with HTTP {resp.status_code}", details={"body": resp.text[:200]})
        return resp.json()

    def send_message(self, to: str, body: str) -> str:
        data = {"To": to, "From": self._from, "Body": body}
        try:
            result = retry_with_backoff(
                lambda: self._post("Messages", data),
                attempts=self._retry_attempts,
                delay=0.5,
                exceptions=(_TransientProviderError,),
                label="twilio:send_message",
            )
        except _TransientProviderError as exc:
            log_error(None, "channel:send_failed", to=mask_address(to), error=str(exc))
            raise ExternalServiceError("twilio", f"message send failed: {exc}") from exc
        log_info(None, "channel:message_sent", to=mask_address(to), sid=result.get("sid"))
        return result.get("sid", "")

    def place_call(
        self,
        to: str,
        callback_url: str,
        status_callback_url: Optional[str] = None,
        timeout_seconds: int = 60,
    ) -> str:
        data: Dict[str, Any] = {
            "To": to,
            "From": self._from,
            "Url": callback_url,
            "Timeout": timeout_seconds,
        }
        if status_callback_url:
            data["StatusCallback"] = status_callback_url
            data["StatusCallbackEvent"] = CALL_STATUS_EVENTS
        try:
            result = self._post("Calls", data)
        except _TransientProviderError as exc:
            raise ExternalServiceError("twilio", f"call placement failed: {exc}") from exc
        log_info(None, "channel:call_placed", to=mask_address(to), sid=result.get("sid"))
        return result.get("sid", "")


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(auth_token: str, url: str, params: Mapping[str, str], signature: Optional[str]) -> bool:
    """Check ``X-Twilio-Signature`` (HMAC-SHA1 over URL plus sorted form params)."""
    if not signature or not auth_token:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)
