import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from cryptography.hazmat.primitives import serialization
from jwcrypto import jwk, jwt

from . import config
from .errors import AppStoreApiError

logger = logging.getLogger(__name__)

AUDIENCE = "appstoreconnect-v1"
TOKEN_TTL = 60 * 60


def load_private_key(path: Path) -> jwk.JWK:
    """Load an App Store Connect API key (.p8, PKCS#8 PEM)"""
    private = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    return jwk.JWK.from_pyca(private)


class AppStoreServerClient:
    """Minimal App Store Server API client for the test notification endpoints."""

    def __init__(
        self,
        issuer_id: str,
        key_id: str,
        bundle_id: str,
        private_key: jwk.JWK,
        environment: str = "sandbox",
        client: Optional[httpx.AsyncClient] = None,
    ):
        if environment not in config.APP_STORE_TEST_ENDPOINTS:
            raise ValueError(f"Unknown environment: {environment}")
        self.issuer_id = issuer_id
        self.key_id = key_id
        self.bundle_id = bundle_id
        self.private_key = private_key
        self.environment = environment
        self.endpoint = config.APP_STORE_TEST_ENDPOINTS[environment]
        self.client = client or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT)

    def make_token(self, now: Optional[int] = None) -> str:
        now = int(time.time()) if now is None else now
        token = jwt.JWT(
            header={"alg": "ES256", "kid": self.key_id, "typ": "JWT"},
            claims={
                "iss": self.issuer_id,
                "iat": now,
                "exp": now + TOKEN_TTL,
                "aud": AUDIENCE,
                "bid": self.bundle_id
            }
        )
        token.make_signed_token(self.private_key)
        return token.serialize()

    async def _request(self, method: str, url: str) -> Dict[str, Any]:
        response = await self.client.request(
            method,
            url,
            headers={
                "Authorization": f"Bearer {self.make_token()}",
                "Content-Type": "application/json"
            }
        )
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = response.text

        if not response.is_success:
            logger.error(json.dumps({
                "event": "appstore.api.error",
                "url": url,
                "status": response.status_code
            }))
            raise AppStoreApiError(response.status_code, body)
        return body

    async def request_test_notification(self) -> Dict[str, Any]:
        """Ask Apple to send a TEST notification to the configured URL"""
        return await self._request("POST", self.endpoint)

    async def get_test_notification_status(self, test_notification_token: str) -> Dict[str, Any]:
        return await self._request("GET", f"{self.endpoint}/{test_notification_token}")

    async def aclose(self) -> None:
        await self.client.aclose()
