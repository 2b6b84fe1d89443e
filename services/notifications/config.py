import os

# Key source
APPLE_JWKS_URL = os.getenv("APPLE_JWKS_URL", "https://appleid.apple.com/auth/keys")
APPLE_ISSUER = os.getenv("APPLE_ISSUER", "https://appleid.apple.com")
APPLE_AUDIENCE = os.getenv("APPLE_AUDIENCE") or None
SIGNING_ALGORITHM = "ES256"

KEY_CACHE_TTL = float(os.getenv("KEY_CACHE_TTL", "86400"))  # 24h
KEY_MIN_REFRESH_INTERVAL = float(os.getenv("KEY_MIN_REFRESH_INTERVAL", "6"))
CLOCK_SKEW = int(os.getenv("CLOCK_SKEW", "0"))

# Outbound calls (key fetch and sink)
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "5.0"))

# Downstream webhook; empty disables forwarding
SINK_URL = os.getenv("SINK_URL", "")

ENABLE_TEST_ENDPOINTS = os.getenv("ENABLE_TEST_ENDPOINTS", "false").lower() == "true"
PORT = int(os.getenv("PORT", "3000"))

# App Store Server API (test notification tooling)
APPLE_ISSUER_ID = os.getenv("APPLE_ISSUER_ID")
APPLE_KEY_ID = os.getenv("APPLE_KEY_ID")
APPLE_BUNDLE_ID = os.getenv("APPLE_BUNDLE_ID")
APPLE_PRIVATE_KEY_PATH = os.getenv("APPLE_PRIVATE_KEY_PATH", "./AuthKey.p8")
APPLE_ENVIRONMENT = os.getenv("APPLE_ENVIRONMENT", "sandbox")

APP_STORE_TEST_ENDPOINTS = {
    "sandbox": "https://api.storekit-sandbox.itunes.apple.com/inApps/v1/notifications/test",
    "production": "https://api.storekit.itunes.apple.com/inApps/v1/notifications/test",
}
