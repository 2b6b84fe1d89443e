import base64
import json
import logging
from typing import Any, Dict, Optional, Tuple

from .errors import DecodeError

logger = logging.getLogger(__name__)


def b64url_to_bytes(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def b64url_decode_strict(s: str) -> bytes:
    """Decode unpadded base64url; the input must be the canonical encoding of its bytes"""
    try:
        raw = b64url_to_bytes(s)
    except (ValueError, UnicodeError) as e:
        raise DecodeError(f"Invalid base64url: {e}")
    if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != s:
        raise DecodeError("Non-canonical base64url encoding")
    return raw


def _split(token: Any) -> list:
    if not isinstance(token, str):
        raise DecodeError("Token must be a string")
    parts = token.split('.')
    if len(parts) != 3:
        raise DecodeError(f"Invalid JWT format: expected 3 segments, got {len(parts)}")
    return parts


def _decode_segment(segment: str, name: str) -> Dict[str, Any]:
    try:
        value = json.loads(b64url_decode_strict(segment))
    except DecodeError as e:
        raise DecodeError(f"Failed to decode {name}: {e}")
    except (ValueError, UnicodeError) as e:
        raise DecodeError(f"Failed to decode {name}: {e}")
    if not isinstance(value, dict):
        raise DecodeError(f"JWT {name} is not a JSON object")
    return value


def decode_segments(token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Parse JWT header and payload without verifying signature"""
    parts = _split(token)
    return _decode_segment(parts[0], "header"), _decode_segment(parts[1], "payload")


def decode_nested(token: str) -> Dict[str, Any]:
    """Decode the payload of a nested signed object.

    Header and signature are ignored and nothing is verified. The nested
    transaction/renewal tokens ride inside an outer envelope that has already
    been verified; callers must treat the result as untrusted beyond that.
    """
    parts = _split(token)
    return _decode_segment(parts[1], "payload")


def _decode_optional(data: Dict[str, Any], field: str) -> Optional[Dict[str, Any]]:
    token = data.get(field)
    if not token:
        return None
    try:
        return decode_nested(token)
    except DecodeError as e:
        logger.warning(json.dumps({
            "event": "notifications.decode.fail",
            "field": field,
            "error": str(e)
        }))
        return None


def extract_nested(data: Optional[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Return (transactionInfo, renewalInfo) from a verified ``data`` claim.

    A malformed nested token is logged and yields None for that part.
    """
    if not isinstance(data, dict):
        return None, None
    return (
        _decode_optional(data, "signedTransactionInfo"),
        _decode_optional(data, "signedRenewalInfo"),
    )
