import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from jwcrypto import jwk
from jwcrypto.common import JWException

from .config import SIGNING_ALGORITHM
from .errors import KeyFetchError, KeyNotFoundError, NoKeyIdError
from .models import SigningKey

logger = logging.getLogger(__name__)

JWKSFetcher = Callable[[], Awaitable[Dict[str, Any]]]


async def fetch_jwks(client: httpx.AsyncClient, jwks_url: str) -> Dict[str, Any]:
    """Fetch JWKS from the issuer"""
    try:
        response = await client.get(jwks_url)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        logger.error(json.dumps({
            "event": "notifications.http.error",
            "op": "fetch_jwks",
            "url": jwks_url,
            "status": e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None,
            "error": str(e)
        }))
        raise KeyFetchError(f"Failed to fetch JWKS: {e}") from e
    except ValueError as e:
        raise KeyFetchError(f"JWKS response is not JSON: {e}") from e


def parse_jwks(document: Any) -> List[SigningKey]:
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise KeyFetchError("JWKS document has no 'keys' array")

    keys = []
    for key_data in document["keys"]:
        kid = key_data.get("kid") if isinstance(key_data, dict) else None
        if not kid:
            logger.warning(json.dumps({
                "event": "notifications.keys.skipped",
                "reason": "missing_kid"
            }))
            continue
        try:
            material = jwk.JWK(**key_data)
        except (JWException, ValueError, TypeError) as e:
            logger.warning(json.dumps({
                "event": "notifications.keys.skipped",
                "reason": "invalid_key",
                "kid": kid,
                "error": str(e)
            }))
            continue
        keys.append(SigningKey(
            id=kid,
            algorithm=key_data.get("alg", SIGNING_ALGORITHM),
            material=material,
        ))
    return keys


class KeyStore:
    """Cache of the issuer's public signing keys, keyed by kid.

    The whole key set is refetched lazily when the cache is older than
    ``ttl`` or a lookup misses. Concurrent refreshes collapse into a single
    upstream fetch. When a refresh fails the last good snapshot keeps being
    served.
    """

    def __init__(
        self,
        fetch: JWKSFetcher,
        ttl: float = 86400,
        min_refresh_interval: float = 6,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl = ttl
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._lock = asyncio.Lock()

        self._keys: List[SigningKey] = []
        self._by_id: Dict[str, SigningKey] = {}
        self._fetched_at: Optional[float] = None
        self._attempted_at: Optional[float] = None
        self._attempts = 0
        self._last_error: Optional[KeyFetchError] = None

    def is_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self.ttl

    def _refreshed_recently(self) -> bool:
        return (self._attempted_at is not None
                and self._clock() - self._attempted_at < self.min_refresh_interval)

    async def refresh(self) -> None:
        seen = self._attempts
        async with self._lock:
            if self._attempts != seen:
                # Another task refreshed while we waited for the lock
                if self._last_error is not None and self._fetched_at is None:
                    raise KeyFetchError(str(self._last_error))
                return

            self._attempted_at = self._clock()
            try:
                keys = parse_jwks(await self._fetch())
            except Exception as e:
                if not isinstance(e, KeyFetchError):
                    e = KeyFetchError(f"Invalid key source response: {e}")
                self._last_error = e
                if self._fetched_at is None:
                    raise e
                logger.warning(json.dumps({
                    "event": "notifications.keys.stale",
                    "error": str(e),
                    "cached_keys": len(self._keys)
                }))
                return
            finally:
                self._attempts += 1

            by_id: Dict[str, SigningKey] = {}
            for key in keys:
                by_id.setdefault(key.id, key)
            self._keys = keys
            self._by_id = by_id
            self._fetched_at = self._clock()
            self._last_error = None

            logger.info(json.dumps({
                "event": "notifications.keys.refreshed",
                "keys_count": len(keys),
                "kids": list(by_id)
            }))

    def _can_serve_snapshot(self) -> bool:
        # Fresh, or stale but a refresh was just attempted and failed
        if self._fetched_at is None:
            return False
        return self.is_fresh() or self._refreshed_recently()

    async def get_key(self, kid: Optional[str]) -> SigningKey:
        if not kid:
            raise NoKeyIdError("No key id supplied")

        key = self._by_id.get(kid)
        if self._can_serve_snapshot():
            if key is not None:
                return key
            if self._refreshed_recently():
                self._raise_missing(kid)

        await self.refresh()
        key = self._by_id.get(kid)
        if key is None:
            self._raise_missing(kid)
        return key

    def _raise_missing(self, kid: str) -> None:
        # A miss only counts as NotFound against a key set that fetched cleanly
        if self._last_error is not None:
            raise KeyFetchError(str(self._last_error))
        logger.warning(json.dumps({
            "event": "notifications.keys.not_found",
            "kid": kid
        }))
        raise KeyNotFoundError(kid)

    async def get_all_keys(self) -> List[SigningKey]:
        if not self._can_serve_snapshot():
            await self.refresh()
        return list(self._keys)

