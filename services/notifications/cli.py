"""Command line helpers.

    python -m services.notifications.cli decode <jwt>
    python -m services.notifications.cli trigger-test
    python -m services.notifications.cli check-status <testNotificationToken>
"""
import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from . import config
from .api_client import AppStoreServerClient, load_private_key
from .decoder import decode_segments
from .errors import AppStoreApiError, DecodeError


def cmd_decode(args) -> int:
    try:
        header, payload = decode_segments(args.token)
    except DecodeError as e:
        print(f"Invalid JWT: {e}", file=sys.stderr)
        return 1
    print("JWT Header:")
    print(json.dumps(header, indent=2))
    print("\nJWT Payload:")
    print(json.dumps(payload, indent=2))
    return 0


def _build_client() -> Optional[AppStoreServerClient]:
    missing = [name for name, value in (
        ("APPLE_ISSUER_ID", config.APPLE_ISSUER_ID),
        ("APPLE_KEY_ID", config.APPLE_KEY_ID),
        ("APPLE_BUNDLE_ID", config.APPLE_BUNDLE_ID),
    ) if not value]
    if missing:
        print(f"Missing required configuration: {', '.join(missing)}", file=sys.stderr)
        return None

    key_path = Path(config.APPLE_PRIVATE_KEY_PATH)
    if not key_path.exists():
        print(f"Private key file not found: {key_path}", file=sys.stderr)
        return None

    return AppStoreServerClient(
        issuer_id=config.APPLE_ISSUER_ID,
        key_id=config.APPLE_KEY_ID,
        bundle_id=config.APPLE_BUNDLE_ID,
        private_key=load_private_key(key_path),
        environment=config.APPLE_ENVIRONMENT,
    )


async def _trigger_test(client: AppStoreServerClient) -> int:
    try:
        data = await client.request_test_notification()
    except AppStoreApiError as e:
        print(f"Request failed: {e.status_code}", file=sys.stderr)
        print(json.dumps(e.body, indent=2), file=sys.stderr)
        return 1
    finally:
        await client.aclose()

    print("Test notification requested.")
    print(json.dumps(data, indent=2))
    token = data.get("testNotificationToken")
    if token:
        print(f"\nCheck its status with: check-status {token}")
    return 0


async def _check_status(client: AppStoreServerClient, token: str) -> int:
    try:
        data = await client.get_test_notification_status(token)
    except AppStoreApiError as e:
        print(f"Failed to get status: {e.status_code}", file=sys.stderr)
        print(json.dumps(e.body, indent=2), file=sys.stderr)
        return 1
    finally:
        await client.aclose()

    print(json.dumps(data, indent=2))
    for i, attempt in enumerate(data.get("sendAttempts") or [], start=1):
        when = attempt.get("attemptDate")
        if isinstance(when, (int, float)):
            when = datetime.fromtimestamp(when / 1000, tz=timezone.utc).isoformat()
        print(f"Attempt {i}: {when} {attempt.get('sendAttemptResult')}")
    return 0


def cmd_trigger_test(args) -> int:
    client = _build_client()
    if client is None:
        return 1
    return asyncio.run(_trigger_test(client))


def cmd_check_status(args) -> int:
    client = _build_client()
    if client is None:
        return 1
    return asyncio.run(_check_status(client, args.token))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="notifications")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("decode", help="print a JWT's header and payload without verifying it")
    p.add_argument("token")
    p.set_defaults(func=cmd_decode)

    p = sub.add_parser("trigger-test", help="ask the App Store to send a TEST notification")
    p.set_defaults(func=cmd_trigger_test)

    p = sub.add_parser("check-status", help="show delivery attempts for a test notification")
    p.add_argument("token")
    p.set_defaults(func=cmd_check_status)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
