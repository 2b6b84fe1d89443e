import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from jwcrypto import jws
from jwcrypto.common import JWException

from .config import SIGNING_ALGORITHM
from .decoder import b64url_decode_strict, decode_segments
from .errors import DecodeError, KeyNotFoundError, VerificationError, VerificationReason
from .keystore import KeyStore
from .models import SigningKey, VerifiedClaims

logger = logging.getLogger(__name__)

# Raw r || s for P-256
ES256_SIGNATURE_LENGTH = 64


def signature_matches(token: str, key: SigningKey) -> bool:
    """Check the token signature against a single key, algorithm pinned to ES256."""
    try:
        header, _ = decode_segments(token)
    except DecodeError:
        return False
    if header.get("alg") != SIGNING_ALGORITHM:
        return False
    try:
        signature = b64url_decode_strict(token.split(".")[2])
    except DecodeError:
        return False
    if len(signature) != ES256_SIGNATURE_LENGTH:
        return False

    try:
        j = jws.JWS()
        j.deserialize(token)
        j.verify(key.material, alg=SIGNING_ALGORITHM)
    except (JWException, ValueError, TypeError):
        return False
    return True


class Verifier:
    """Verifies compact signed notification tokens.

    With a ``kid`` in the header the token must verify against exactly that
    key. Without one, every published key is tried in order and the first
    that verifies wins. A token naming an unknown or wrong key never falls
    back to trying the others. A missing ``kid`` therefore never surfaces as
    ``NoKeyId``.
    """

    def __init__(
        self,
        key_store: KeyStore,
        issuer: str,
        audience: Optional[str] = None,
        clock_skew: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.key_store = key_store
        self.issuer = issuer
        self.audience = audience
        self.clock_skew = clock_skew
        self._clock = clock

    def check_claims(self, payload: Dict[str, Any], kid: Optional[str]) -> VerifiedClaims:
        if payload.get("iss") != self.issuer:
            raise VerificationError(
                VerificationReason.ISSUER_MISMATCH,
                f"expected {self.issuer}, got {payload.get('iss')}"
            )

        aud = payload.get("aud")
        if self.audience is not None:
            audiences: List[Any] = aud if isinstance(aud, list) else [aud]
            if self.audience not in audiences:
                raise VerificationError(VerificationReason.AUDIENCE_MISMATCH, f"got {aud}")

        exp = payload.get("exp")
        if exp is not None:
            if isinstance(exp, bool) or not isinstance(exp, (int, float)):
                raise VerificationError(VerificationReason.BAD_FORMAT, "exp is not a number")
            if self._clock() >= exp + self.clock_skew:
                raise VerificationError(VerificationReason.EXPIRED, f"exp={exp}")

        for field in ("notificationType", "subtype"):
            if payload.get(field) is not None and not isinstance(payload[field], str):
                raise VerificationError(VerificationReason.BAD_FORMAT, f"{field} is not a string")

        data = payload.get("data")
        return VerifiedClaims(
            issuer=payload.get("iss"),
            audience=aud,
            expiry=exp,
            notification_type=payload.get("notificationType"),
            subtype=payload.get("subtype"),
            data=data if isinstance(data, dict) else {},
            payload=payload,
            key_id=kid,
        )

    def try_key(self, token: str, payload: Dict[str, Any], key: SigningKey) -> Optional[VerifiedClaims]:
        if not signature_matches(token, key):
            return None
        try:
            return self.check_claims(payload, key.id)
        except VerificationError:
            return None

    async def verify(self, token: str) -> VerifiedClaims:
        try:
            header, payload = decode_segments(token)
        except DecodeError as e:
            raise VerificationError(VerificationReason.BAD_FORMAT, str(e))

        for field in ("alg", "kid"):
            if header.get(field) is not None and not isinstance(header[field], str):
                raise VerificationError(VerificationReason.BAD_FORMAT, f"header {field} is not a string")

        kid = header.get("kid")
        if kid:
            return await self._verify_with_kid(token, payload, kid)

        logger.warning(json.dumps({
            "event": "notifications.verify.no_kid",
            "alg": header.get("alg")
        }))
        return await self._verify_with_any_key(token, payload)

    async def _verify_with_kid(self, token: str, payload: Dict[str, Any], kid: str) -> VerifiedClaims:
        try:
            key = await self.key_store.get_key(kid)
        except KeyNotFoundError:
            raise VerificationError(VerificationReason.UNKNOWN_KEY, f"kid={kid}")

        if not signature_matches(token, key):
            raise VerificationError(VerificationReason.SIGNATURE_INVALID, f"kid={kid}")

        claims = self.check_claims(payload, kid)
        logger.info(json.dumps({
            "event": "notifications.verify.success",
            "kid": kid,
            "path": "kid"
        }))
        return claims

    async def _verify_with_any_key(self, token: str, payload: Dict[str, Any]) -> VerifiedClaims:
        keys = await self.key_store.get_all_keys()
        for key in keys:
            claims = self.try_key(token, payload, key)
            if claims is not None:
                logger.info(json.dumps({
                    "event": "notifications.verify.success",
                    "kid": key.id,
                    "path": "all_keys"
                }))
                return claims

        raise VerificationError(
            VerificationReason.ALL_KEYS_EXHAUSTED,
            f"no match among {len(keys)} keys"
        )
