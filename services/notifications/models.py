from datetime import datetime
from typing import Any, Dict, Optional, Union

from jwcrypto import jwk
from pydantic import BaseModel, ConfigDict, Field


class SigningKey(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    algorithm: str
    material: jwk.JWK


class VerifiedClaims(BaseModel):
    """Claims of an outer token whose signature has been checked.

    Only the Verifier builds these.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    issuer: Optional[str] = None
    audience: Optional[Any] = None
    expiry: Optional[Union[int, float]] = None
    notification_type: Optional[str] = Field(default=None, alias="notificationType")
    subtype: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)
    key_id: Optional[str] = Field(default=None, alias="keyId")


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    notification_type: Optional[str] = Field(default=None, alias="notificationType")
    subtype: Optional[str] = None
    category: str
    recognized: bool
    message: str
    level: str = "info"


class NotificationEvent(BaseModel):
    """Normalized record handed to the sink.

    transactionInfo and renewalInfo are decoded from nested tokens without
    checking their own signatures; trust them only as far as the sender of
    the verified outer envelope.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    notification_type: Optional[str] = Field(default=None, alias="notificationType")
    subtype: Optional[str] = None
    category: str
    verified_claims: Optional[Dict[str, Any]] = Field(default=None, alias="verifiedClaims")
    transaction_info: Optional[Dict[str, Any]] = Field(default=None, alias="transactionInfo")
    renewal_info: Optional[Dict[str, Any]] = Field(default=None, alias="renewalInfo")
    received_at: datetime = Field(alias="receivedAt")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DispatchResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    classification: Classification
    event: NotificationEvent
    delivered: bool = False
    sink_error: Optional[str] = Field(default=None, alias="sinkError")


# Request bodies

class SignedPayloadRequest(BaseModel):
    signedPayload: Optional[str] = None


class InjectedNotificationRequest(BaseModel):
    notificationType: Optional[str] = None
    subtype: Optional[str] = None
    transactionInfo: Optional[Dict[str, Any]] = None
    renewalInfo: Optional[Dict[str, Any]] = None
