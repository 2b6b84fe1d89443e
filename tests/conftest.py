"""
Shared fixtures: locally generated ES256 keys and signed notification tokens.
"""

import base64
import json
import time
from unittest.mock import AsyncMock

import pytest
from jwcrypto import jwk, jwt

from services.notifications.keystore import KeyStore
from services.notifications.verifier import Verifier

ISSUER = "https://appleid.apple.com"


def make_key(kid):
    return jwk.JWK.generate(kty='EC', curve='P-256', kid=kid)


def sign_token(claims, key, kid=None, alg="ES256"):
    """Sign claims with key; the header carries kid only when given."""
    header = {"alg": alg}
    if kid is not None:
        header["kid"] = kid
    token = jwt.JWT(header=header, claims=claims)
    token.make_signed_token(key)
    return token.serialize()


def b64url(data):
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode("ascii")


def unsigned_token(payload, header=None):
    """Structurally valid compact token with a bogus signature."""
    return f"{b64url(header or {'alg': 'ES256'})}.{b64url(payload)}.c2lnbmF0dXJl"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def signing_keys():
    """Two issuer keys, in published order."""
    return [make_key("key-1"), make_key("key-2")]


@pytest.fixture
def jwks(signing_keys):
    return {"keys": [k.export_public(as_dict=True) for k in signing_keys]}


@pytest.fixture
def fetch(jwks):
    return AsyncMock(return_value=jwks)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_store(fetch, clock):
    return KeyStore(fetch, ttl=3600, min_refresh_interval=10, clock=clock)


@pytest.fixture
def verifier(key_store):
    return Verifier(key_store, issuer=ISSUER)


@pytest.fixture
def transaction_claims():
    return {
        "transactionId": "2000000123456789",
        "originalTransactionId": "2000000123456789",
        "productId": "com.example.pro.monthly",
        "expiresDate": 1767225600000,
        "type": "Auto-Renewable Subscription",
    }


@pytest.fixture
def renewal_claims():
    return {
        "autoRenewProductId": "com.example.pro.monthly",
        "autoRenewStatus": 1,
        "originalTransactionId": "2000000123456789",
    }


@pytest.fixture
def notification_claims(signing_keys, transaction_claims, renewal_claims):
    """Outer notification payload with nested signed transaction/renewal info."""
    nested_key = signing_keys[0]
    return {
        "iss": ISSUER,
        "notificationType": "SUBSCRIBED",
        "subtype": "INITIAL_BUY",
        "notificationUUID": "a3a4cbd5-8c0c-4b8f-9d2c-5f7c3e7b6f11",
        "version": "2.0",
        "signedDate": int(time.time() * 1000),
        "exp": int(time.time()) + 3600,
        "data": {
            "bundleId": "com.example.app",
            "environment": "Sandbox",
            "signedTransactionInfo": sign_token(transaction_claims, nested_key, kid="key-1"),
            "signedRenewalInfo": sign_token(renewal_claims, nested_key, kid="key-1"),
        },
    }
