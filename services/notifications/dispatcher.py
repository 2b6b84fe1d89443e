import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import SinkUnavailable
from .models import Classification, DispatchResult, NotificationEvent, VerifiedClaims
from .sink import WebhookSink

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    DID_RENEW = "DID_RENEW"
    DID_FAIL_TO_RENEW = "DID_FAIL_TO_RENEW"
    DID_CHANGE_RENEWAL_STATUS = "DID_CHANGE_RENEWAL_STATUS"
    EXPIRED = "EXPIRED"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"
    OFFER_REDEEMED = "OFFER_REDEEMED"
    PRICE_INCREASE = "PRICE_INCREASE"
    REFUND = "REFUND"
    REFUND_DECLINED = "REFUND_DECLINED"
    RENEWAL_EXTENDED = "RENEWAL_EXTENDED"
    REVOKE = "REVOKE"
    TEST = "TEST"


UNKNOWN_CATEGORY = "unknown"
RECOGNIZED_TYPES = frozenset(t.value for t in NotificationType)

# (type, subtype) -> (category, level, message); subtype None is the type's default
_RULES: Dict[Tuple[str, Optional[str]], Tuple[str, str, str]] = {
    ("SUBSCRIBED", None): ("subscription.started", "info", "New subscription started"),
    ("SUBSCRIBED", "INITIAL_BUY"): ("subscription.started", "info", "New subscription started (initial buy)"),
    ("SUBSCRIBED", "RESUBSCRIBE"): ("subscription.resubscribed", "info", "User resubscribed"),
    ("DID_RENEW", None): ("subscription.renewed", "info", "Subscription renewed successfully"),
    ("DID_FAIL_TO_RENEW", None): ("subscription.renewal_failed", "warning", "Subscription renewal failed"),
    ("DID_FAIL_TO_RENEW", "GRACE_PERIOD"): (
        "subscription.renewal_failed.grace_period", "warning",
        "Subscription renewal failed, user is in grace period"),
    ("DID_CHANGE_RENEWAL_STATUS", None): ("renewal_status.changed", "info", "Renewal status changed"),
    ("DID_CHANGE_RENEWAL_STATUS", "AUTO_RENEW_ENABLED"): (
        "renewal_status.auto_renew_enabled", "info", "User enabled auto-renewal"),
    ("DID_CHANGE_RENEWAL_STATUS", "AUTO_RENEW_DISABLED"): (
        "renewal_status.auto_renew_disabled", "warning", "User disabled auto-renewal"),
    ("EXPIRED", None): ("subscription.expired", "warning", "Subscription expired"),
    ("EXPIRED", "VOLUNTARY"): ("subscription.expired.voluntary", "warning", "Subscription expired, user cancelled"),
    ("EXPIRED", "BILLING_RETRY"): (
        "subscription.expired.billing_retry", "warning", "Subscription expired due to billing issues"),
    ("GRACE_PERIOD_EXPIRED", None): (
        "subscription.grace_period_expired", "warning", "Grace period expired, subscription cancelled"),
    ("OFFER_REDEEMED", None): ("offer.redeemed", "info", "User redeemed a promotional offer"),
    ("PRICE_INCREASE", None): ("price_increase", "info", "Price increase notice"),
    ("PRICE_INCREASE", "PENDING"): ("price_increase.pending", "info", "Price increase pending user consent"),
    ("PRICE_INCREASE", "ACCEPTED"): ("price_increase.accepted", "info", "User accepted price increase"),
    ("REFUND", None): ("transaction.refunded", "warning", "Transaction was refunded"),
    ("REFUND_DECLINED", None): ("refund.declined", "info", "Refund request was declined"),
    ("RENEWAL_EXTENDED", None): ("subscription.renewal_extended", "info", "Subscription renewal date extended"),
    ("REVOKE", None): ("purchase.revoked", "warning", "Purchase revoked (family sharing removed or refund)"),
    ("TEST", None): ("test", "info", "Test notification from App Store Connect"),
}


def classify(notification_type: Optional[str], subtype: Optional[str]) -> Classification:
    """Map (type, subtype) to a category label. Unrecognized types are never an error."""
    if notification_type not in RECOGNIZED_TYPES:
        return Classification(
            notification_type=notification_type,
            subtype=subtype,
            category=UNKNOWN_CATEGORY,
            recognized=False,
            message=f"Unknown notification type: {notification_type}",
            level="warning",
        )
    category, level, message = _RULES.get((notification_type, subtype)) or _RULES[(notification_type, None)]
    return Classification(
        notification_type=notification_type,
        subtype=subtype,
        category=category,
        recognized=True,
        message=message,
        level=level,
    )


def _format_ms(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat().replace('+00:00', 'Z')
    except (OverflowError, OSError, ValueError):
        return value


class Dispatcher:
    """Classifies notifications and forwards them to the sink.

    Each call is independent. Sink failures are logged and recorded in the
    result, never raised, so the inbound delivery is still acknowledged.
    """

    def __init__(self, sink: Optional[WebhookSink] = None):
        self.sink = sink

    async def dispatch(
        self,
        notification_type: Optional[str],
        subtype: Optional[str],
        verified_claims: Optional[VerifiedClaims],
        transaction_info: Optional[Dict[str, Any]],
        renewal_info: Optional[Dict[str, Any]],
    ) -> DispatchResult:
        classification = classify(notification_type, subtype)
        self._log(classification, transaction_info, renewal_info)

        event = NotificationEvent(
            notification_type=notification_type,
            subtype=subtype,
            category=classification.category,
            verified_claims=verified_claims.payload if verified_claims is not None else None,
            transaction_info=transaction_info,
            renewal_info=renewal_info,
            received_at=datetime.now(timezone.utc),
        )

        if self.sink is None:
            logger.debug(json.dumps({"event": "notifications.sink.skipped", "reason": "no_sink"}))
            return DispatchResult(classification=classification, event=event)

        try:
            await self.sink.deliver(event)
        except SinkUnavailable as e:
            logger.error(json.dumps({
                "event": "notifications.sink.fail",
                "notification_type": notification_type,
                "status": e.status_code,
                "error": str(e)
            }))
            return DispatchResult(classification=classification, event=event, sink_error=str(e))

        return DispatchResult(classification=classification, event=event, delivered=True)

    def _log(self, classification: Classification,
             transaction_info: Optional[Dict[str, Any]],
             renewal_info: Optional[Dict[str, Any]]) -> None:
        record: Dict[str, Any] = {
            "event": "notifications.dispatch",
            "notification_type": classification.notification_type,
            "subtype": classification.subtype,
            "category": classification.category,
            "message": classification.message,
        }
        if transaction_info:
            record["transaction_id"] = transaction_info.get("transactionId")
            record["product_id"] = transaction_info.get("productId")
            if transaction_info.get("expiresDate"):
                record["expires"] = _format_ms(transaction_info["expiresDate"])
        if renewal_info:
            record["auto_renew"] = "enabled" if renewal_info.get("autoRenewStatus") == 1 else "disabled"

        level = logging.WARNING if classification.level == "warning" else logging.INFO
        logger.log(level, json.dumps(record))
