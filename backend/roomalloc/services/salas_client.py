from __future__ import annotations

from datetime import datetime
import logging
import time
from typing import Any, Callable

import requests

from roomalloc.core.config import Settings, get_settings
from roomalloc.core.exceptions import (
    ConfigurationError,
    SalasApiError,
    SalasConnectionError,
    SalasRateLimitError,
)
from roomalloc.services.circuit_breaker import CircuitBreaker, get_circuit_breaker
from roomalloc.services.rate_limit import InMemoryRateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

AUTH_TOKEN_ENDPOINT = "/api/v1/auth/token"
AUTH_USER_ENDPOINT = "/api/v1/auth/user"
RATE_LIMIT_KEY = "salas_api"
RATE_LIMIT_WINDOW_SECONDS = 60
DEFAULT_RETRY_AFTER_SECONDS = 60

# Client errors that say nothing about the remote system's health.
NON_BREAKER_STATUSES = {403, 404, 422}


def parse_retry_after(value: str | None) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(0.0, float(value))
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def _validation_message(payload: Any) -> str:
    if not isinstance(payload, dict):
        return "Validation failed"
    message = str(payload.get("message") or "Validation failed")
    errors = payload.get("errors")
    if isinstance(errors, dict):
        flat: list[str] = []
        for value in errors.values():
            if isinstance(value, list):
                flat.extend(str(item) for item in value)
            else:
                flat.append(str(value))
        if flat:
            message = f"{message}: {', '.join(flat)}"
    return message


class SalasApiClient:
    """Blocking client for the remote room-booking API.

    Every call goes through the shared circuit breaker and the outbound rate
    limiter, and is retried with exponential backoff while the failure is
    retryable. Calls are sequential; one instance is used per job.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session: requests.Session | None = None,
        breaker: CircuitBreaker | None = None,
        limiter: InMemoryRateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        if not self.settings.salas_api_url or not self.settings.salas_api_url.startswith(("http://", "https://")):
            raise ConfigurationError("Remote booking API URL is missing or invalid (SALAS_API_URL)")
        self.base_url = self.settings.salas_api_url.rstrip("/")
        self.session = session or requests.Session()
        self.breaker = breaker or get_circuit_breaker()
        self.limiter = limiter or get_rate_limiter()
        self._sleep = sleep
        self._token: str | None = None

    def authenticate(self) -> str:
        email = self.settings.salas_api_email
        password = self.settings.salas_api_password
        if not email or not password:
            raise ConfigurationError(
                "Remote booking API credentials not configured (SALAS_API_EMAIL / SALAS_API_PASSWORD)"
            )
        payload = {
            "email": email,
            "password": password,
            "token_name": f"Sistema de Alocação - {datetime.now():%Y-%m-%d %H:%M:%S}",
        }
        try:
            response = self._request("POST", AUTH_TOKEN_ENDPOINT, json_body=payload, requires_auth=False)
        except SalasApiError as exc:
            logger.error("SALAS AUTH FAILED | email=%s | error=%s", email, exc.message)
            raise
        token = (response.get("data") or {}).get("token")
        if not token:
            raise SalasApiError("Invalid authentication response format")
        self._token = token
        logger.info("SALAS AUTH OK | email=%s", email)
        return token

    def clear_token(self) -> None:
        self._token = None

    def get(self, endpoint: str, params: dict | None = None) -> dict:
        return self._request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: dict) -> dict:
        return self._request("POST", endpoint, json_body=data)

    def delete(self, endpoint: str, params: dict | None = None) -> dict:
        return self._request("DELETE", endpoint, params=params)

    def test_connection(self) -> bool:
        try:
            self.authenticate()
            self.get(AUTH_USER_ENDPOINT)
        except (SalasApiError, ConfigurationError) as exc:
            logger.error("SALAS CONNECTION TEST FAILED | error=%s", exc)
            return False
        return True

    def _backoff_delay(self, attempt: int, error: SalasApiError) -> float:
        if error.http_status == 429 and error.retry_after:
            return min(error.retry_after, self.settings.salas_max_rate_limit_delay_seconds)
        delay = self.settings.salas_retry_initial_delay_seconds * self.settings.salas_retry_multiplier ** (attempt - 1)
        return min(delay, self.settings.salas_retry_max_delay_seconds)

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict | None = None,
        json_body: dict | None = None,
        requires_auth: bool = True,
    ) -> dict:
        attempts = max(1, self.settings.salas_retry_max_attempts)
        for attempt in range(1, attempts + 1):
            self.breaker.before_call()
            if requires_auth and self._token is None:
                self.authenticate()
            try:
                return self._send_once(method, endpoint, params=params, json_body=json_body, requires_auth=requires_auth)
            except SalasApiError as exc:
                if not exc.retryable or attempt == attempts:
                    if attempt == attempts and exc.retryable:
                        logger.error(
                            "SALAS RETRIES EXHAUSTED | method=%s | endpoint=%s | attempts=%s | error=%s",
                            method,
                            endpoint,
                            attempts,
                            exc.message,
                        )
                    raise
                delay = self._backoff_delay(attempt, exc)
                logger.warning(
                    "SALAS RETRY | method=%s | endpoint=%s | attempt=%s | max_attempts=%s | delay_seconds=%s | error=%s",
                    method,
                    endpoint,
                    attempt,
                    attempts,
                    delay,
                    exc.message,
                )
                self._sleep(delay)
        raise SalasApiError("Retry mechanism failed")

    def _send_once(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict | None,
        json_body: dict | None,
        requires_auth: bool,
    ) -> dict:
        self.limiter.acquire(
            key=RATE_LIMIT_KEY,
            limit=self.settings.salas_requests_per_minute,
            window_seconds=RATE_LIMIT_WINDOW_SECONDS,
        )
        headers = {"Accept": "application/json"}
        if requires_auth and self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        url = f"{self.base_url}{endpoint}"
        if self.settings.salas_log_requests:
            logger.debug(
                "SALAS REQUEST | method=%s | url=%s | keys=%s",
                method,
                url,
                sorted((json_body or params or {}).keys()),
            )

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=(
                    self.settings.salas_connection_timeout_seconds,
                    self.settings.salas_request_timeout_seconds,
                ),
            )
        except requests.RequestException as exc:
            error = SalasConnectionError(str(exc))
            self.breaker.record_failure(error)
            raise error from exc

        status_code = response.status_code
        payload = self._decode(response)
        if self.settings.salas_log_responses:
            logger.debug(
                "SALAS RESPONSE | status=%s | keys=%s",
                status_code,
                sorted(payload.keys()) if isinstance(payload, dict) else [],
            )

        if 200 <= status_code < 300:
            self.breaker.record_success()
            if payload is None:
                return {}
            if not isinstance(payload, dict):
                raise SalasApiError("Invalid JSON response received from API", http_status=status_code)
            return payload

        error = self._error_for(status_code, payload, response)
        logger.error(
            "SALAS HTTP ERROR | method=%s | endpoint=%s | status=%s | message=%s",
            method,
            endpoint,
            status_code,
            error.message,
        )
        if status_code == 401:
            self.clear_token()
        if status_code not in NON_BREAKER_STATUSES:
            self.breaker.record_failure(error)
        raise error

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _error_for(status_code: int, payload: Any, response: requests.Response) -> SalasApiError:
        details = {"http_status": status_code}
        if status_code == 401:
            # The token is dropped and re-issued on the next attempt.
            return SalasApiError(
                "Authentication failed - token may have expired",
                http_status=401,
                retryable=True,
                details=details,
            )
        if status_code == 403:
            return SalasApiError("Access denied - insufficient permissions", http_status=403, details=details)
        if status_code == 404:
            return SalasApiError("Resource not found", http_status=404, details=details)
        if status_code == 422:
            if isinstance(payload, dict):
                details["errors"] = payload.get("errors")
            return SalasApiError(_validation_message(payload), http_status=422, details=details)
        if status_code == 429:
            return SalasRateLimitError(parse_retry_after(response.headers.get("Retry-After")))
        if status_code >= 500:
            return SalasApiError(f"Server error: {status_code}", http_status=status_code, retryable=True, details=details)
        return SalasApiError(
            f"Request failed with status: {status_code}",
            http_status=status_code,
            retryable=True,
            details=details,
        )
