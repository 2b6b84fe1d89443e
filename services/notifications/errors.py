from enum import Enum
from typing import Optional


class NotificationError(Exception):
    """Base class for pipeline errors"""


class KeyFetchError(NotificationError):
    """Key source unreachable or returned an invalid document"""


class KeyNotFoundError(NotificationError):
    """Key set fetched successfully but the requested kid is absent"""

    def __init__(self, kid: str):
        super().__init__(f"Key not found: {kid}")
        self.kid = kid


class NoKeyIdError(NotificationError):
    """Lookup attempted without a key id"""


class DecodeError(NotificationError):
    """Compact token is not structurally valid"""


class SinkUnavailable(NotificationError):
    """Downstream webhook call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VerificationReason(str, Enum):
    # NO_KEY_ID mirrors NoKeyIdError from the key store; Verifier routes a
    # kid-less token to the all-keys path instead of raising it.
    BAD_FORMAT = "BadFormat"
    NO_KEY_ID = "NoKeyId"
    UNKNOWN_KEY = "UnknownKey"
    SIGNATURE_INVALID = "SignatureInvalid"
    EXPIRED = "Expired"
    ISSUER_MISMATCH = "IssuerMismatch"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    ALL_KEYS_EXHAUSTED = "AllKeysExhausted"


class VerificationError(NotificationError):
    def __init__(self, reason: VerificationReason, detail: str = ""):
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


class AppStoreApiError(NotificationError):
    """Non-success response from the App Store Server API"""

    def __init__(self, status_code: int, body):
        super().__init__(f"App Store Server API returned {status_code}")
        self.status_code = status_code
        self.body = body
