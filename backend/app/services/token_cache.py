import logging
import threading
import time
from typing import Callable, Optional, Tuple

import requests

log = logging.getLogger("token_cache")


class TokenFetchError(Exception):
    pass


class TokenCache:
    """
    Holds one bearer token and its expiry, refreshing lazily.

    `fetch` returns (token, expires_in_seconds). The cached token is treated
    as expired `leeway_seconds` before the issuer says it is.
    """

    def __init__(
        self,
        fetch: Callable[[], Tuple[str, int]],
        leeway_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.leeway_seconds = leeway_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = threading.Lock()

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def get_valid_token(self) -> str:
        with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token
            token, expires_in = self._fetch()
            self._token = token
            self._expires_at = self._clock() + expires_in - self.leeway_seconds
            log.debug("refreshed token, valid for %ss", expires_in - self.leeway_seconds)
            return self._token

    def invalidate(self):
        with self._lock:
            self._token = None
            self._expires_at = 0.0


class ManagementApiClient:
    """Identity provider management API, used to look up a user's roles."""

    def __init__(self, domain: str, client_id: str, client_secret: str, leeway_seconds: int = 60,
                 token_cache: Optional[TokenCache] = None, timeout: float = 10.0):
        self.base_url = f"https://{domain}"
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.tokens = token_cache or TokenCache(self._request_token, leeway_seconds=leeway_seconds)

    def _request_token(self) -> Tuple[str, int]:
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "audience": f"{self.base_url}/api/v2/",
            "grant_type": "client_credentials",
        }
        try:
            resp = requests.post(f"{self.base_url}/oauth/token", json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
            return body["access_token"], int(body["expires_in"])
        except (requests.RequestException, KeyError, ValueError) as e:
            log.error("Error obtaining management API token: %s", e)
            raise TokenFetchError("Failed to obtain management API token") from e

    def get_user_roles(self, user_id: str) -> list:
        token = self.tokens.get_valid_token()
        try:
            resp = requests.get(
                f"{self.base_url}/api/v2/users/{user_id}/roles",
                headers={"authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            if resp.status_code == 401:
                # token revoked before its expiry; next call fetches a fresh one
                self.tokens.invalidate()
            resp.raise_for_status()
            return [role["name"] for role in resp.json()]
        except (requests.RequestException, KeyError, ValueError) as e:
            log.error("Error fetching roles for %s: %s", user_id, e)
            raise TokenFetchError("Failed to fetch user roles") from e
