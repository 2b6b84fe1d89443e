import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .decoder import decode_segments, extract_nested
from .dispatcher import Dispatcher
from .errors import DecodeError, KeyFetchError, VerificationError
from .keystore import KeyStore, fetch_jwks
from .models import InjectedNotificationRequest, SignedPayloadRequest
from .sink import WebhookSink
from .verifier import Verifier

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


def create_app(
    verifier: Optional[Verifier] = None,
    dispatcher: Optional[Dispatcher] = None,
    enable_test_endpoints: bool = config.ENABLE_TEST_ENDPOINTS,
) -> FastAPI:
    """Build the notification receiver.

    Components not passed in are wired from ``config`` at startup, sharing
    one ``httpx.AsyncClient`` for the key fetch and the sink.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        http_client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT)
        app.state.http_client = http_client

        app.state.verifier = verifier or Verifier(
            KeyStore(
                partial(fetch_jwks, http_client, config.APPLE_JWKS_URL),
                ttl=config.KEY_CACHE_TTL,
                min_refresh_interval=config.KEY_MIN_REFRESH_INTERVAL,
            ),
            issuer=config.APPLE_ISSUER,
            audience=config.APPLE_AUDIENCE,
            clock_skew=config.CLOCK_SKEW,
        )
        if dispatcher is not None:
            app.state.dispatcher = dispatcher
        else:
            sink = WebhookSink(config.SINK_URL, http_client) if config.SINK_URL else None
            app.state.dispatcher = Dispatcher(sink)

        logger.info(json.dumps({
            "event": "notifications.start",
            "jwks_url": config.APPLE_JWKS_URL,
            "sink": bool(config.SINK_URL),
            "test_endpoints": enable_test_endpoints
        }))

        yield

        # Shutdown
        await http_client.aclose()

    app = FastAPI(title="App Store Notifications Receiver", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/appstore/notifications")
    async def receive_notification(request: Request, body: SignedPayloadRequest):
        """Verify, classify and forward an App Store Server Notification"""
        if not body.signedPayload:
            logger.error(json.dumps({
                "event": "notifications.receive.fail",
                "reason": "missing_signed_payload"
            }))
            return JSONResponse(status_code=400, content={"error": "Missing signedPayload"})

        try:
            claims = await request.app.state.verifier.verify(body.signedPayload)
        except VerificationError as e:
            logger.info(json.dumps({
                "event": "notifications.verify.fail",
                "reason": e.reason.value,
                "detail": e.detail
            }))
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})
        except KeyFetchError as e:
            logger.error(json.dumps({
                "event": "notifications.verify.error",
                "reason": "key_fetch_error",
                "error": str(e)
            }))
            return JSONResponse(status_code=503, content={"error": "Key source unavailable"})

        # Signature is trusted from here on; always acknowledge so the sender does not retry
        try:
            transaction_info, renewal_info = extract_nested(claims.data)
            await request.app.state.dispatcher.dispatch(
                claims.notification_type,
                claims.subtype,
                claims,
                transaction_info,
                renewal_info,
            )
        except Exception as e:
            logger.error(json.dumps({
                "event": "notifications.process.error",
                "notification_type": claims.notification_type,
                "error": str(e)
            }))

        return {"status": "received"}

    @app.post("/debug/jwt")
    async def debug_jwt(request: Request, body: SignedPayloadRequest):
        """Inspect a signed payload and report whether it verifies. No dispatch."""
        if not body.signedPayload:
            return JSONResponse(status_code=400, content={"error": "Missing signedPayload"})

        try:
            header, payload = decode_segments(body.signedPayload)
        except DecodeError:
            return JSONResponse(status_code=400, content={"error": "Invalid JWT format"})

        verification = {"verified": False, "error": None, "keyId": None}
        try:
            claims = await request.app.state.verifier.verify(body.signedPayload)
            verification["verified"] = True
            verification["keyId"] = claims.key_id
        except VerificationError as e:
            verification["error"] = e.reason.value
        except KeyFetchError as e:
            verification["error"] = f"KeyFetchError: {e}"

        logger.info(json.dumps({
            "event": "notifications.debug.jwt",
            "has_kid": bool(header.get("kid")),
            "kid": header.get("kid"),
            "alg": header.get("alg"),
            "notification_type": payload.get("notificationType"),
            "verified": verification["verified"],
            "error": verification["error"]
        }))

        return {"header": header, "payload": payload, "verification": verification}

    if enable_test_endpoints:
        @app.post("/test/notification")
        async def inject_notification(request: Request, body: InjectedNotificationRequest):
            """Feed an already-decoded notification to the dispatcher (bypasses verification)"""
            logger.warning(json.dumps({
                "event": "notifications.test.received",
                "notification_type": body.notificationType
            }))

            if not body.notificationType:
                return JSONResponse(status_code=400, content={"error": "Missing notificationType"})

            result = await request.app.state.dispatcher.dispatch(
                body.notificationType,
                body.subtype,
                None,
                body.transactionInfo,
                body.renewalInfo,
            )
            return {"status": "test notification processed", "category": result.classification.category}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
