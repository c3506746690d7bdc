#!/usr/bin/env python3
"""
Dev helper: send a test payment event to the local backend.

Builds a payment-provider event for a case and POST-s it to the
/api/payments/webhook endpoint.

Usage
-----
# Checkout completed for case abc123, targeting localhost:8000
python scripts/send_payment_event.py --case-id abc123

# Failure events
python scripts/send_payment_event.py --case-id abc123 --event expired
python scripts/send_payment_event.py --case-id abc123 --event intent-failed --error "Card declined"

# Print the payload without sending it
python scripts/send_payment_event.py --case-id abc123 --dry-run

Environment / .env
------------------
PAYMENT_WEBHOOK_SECRET   Shared webhook secret (required unless --dry-run).
"""

import argparse
import json
import os
import secrets
import sys
import textwrap
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

_EVENT_TYPES = {
    "completed": "checkout.session.completed",
    "async-failed": "checkout.session.async_payment_failed",
    "intent-failed": "payment_intent.payment_failed",
    "expired": "checkout.session.expired",
}


def build_event(
    event_type: str,
    case_id: str,
    email: Optional[str],
    amount_cents: int,
    error: Optional[str],
) -> dict:
    """Build an event shaped like the provider's checkout/payment-intent events."""
    intent_id = f"pi_test_{secrets.token_hex(6)}"
    if event_type == "payment_intent.payment_failed":
        obj = {
            "id": intent_id,
            "amount": amount_cents,
            "receipt_email": email,
            "metadata": {"case_id": case_id},
            "last_payment_error": {"message": error or "Your card was declined."},
        }
    else:
        obj = {
            "id": f"cs_test_{secrets.token_hex(6)}",
            "client_reference_id": case_id,
            "customer_email": email,
            "payment_intent": intent_id,
            "amount_total": amount_cents,
            "metadata": {"case_id": case_id},
        }
    return {
        "id": f"evt_test_{secrets.token_hex(6)}",
        "type": event_type,
        "data": {"object": obj},
    }


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_payment_event.py",
        description=textwrap.dedent("""\
            Send a test payment event to the backend.

            Reads PAYMENT_WEBHOOK_SECRET from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--case-id", required=True, help="Case (session) id the payment belongs to")
    parser.add_argument("--event", default="completed", choices=list(_EVENT_TYPES), help="Event to send")
    parser.add_argument("--email", default=None, help="Billing email carried by the event")
    parser.add_argument("--amount", type=int, default=14900, help="Amount in cents (default: 14900)")
    parser.add_argument("--error", default=None, help="Failure message for intent-failed events")
    parser.add_argument("--secret", default=None, help="Override PAYMENT_WEBHOOK_SECRET")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload without sending it")

    args = parser.parse_args()

    payload = build_event(_EVENT_TYPES[args.event], args.case_id, args.email, args.amount, args.error)
    endpoint = f"{args.url.rstrip('/')}/api/payments/webhook"

    print(f"Endpoint: {endpoint}")
    print(f"Event   : {payload['type']} for case {args.case_id}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    secret = args.secret or os.getenv("PAYMENT_WEBHOOK_SECRET", "")
    if not secret:
        print(
            "ERROR: No webhook secret found.\n"
            "Set PAYMENT_WEBHOOK_SECRET in your environment or .env file, or pass --secret.",
            file=sys.stderr,
        )
        return 1

    try:
        response = httpx.post(endpoint, json=payload, headers={"X-Webhook-Secret": secret}, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn app.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
