"""Send a gateway-shaped webhook to a running webhook service.

Useful for manual duplicate-delivery and out-of-order testing.
"""

import argparse
import json
from pathlib import Path
from uuid import uuid4

import httpx


def build_payload(event_type: str, reference_id: str, event_id: str | None) -> dict:
    return {
        "id": event_id or f"hook_{uuid4().hex[:16]}",
        "type": event_type,
        "data": {"id": reference_id},
    }


def main() -> None:
    """Parse CLI args and post one webhook delivery."""

    parser = argparse.ArgumentParser(description="Post a test webhook to the webhook service.")
    parser.add_argument("--url", default="http://localhost:8001/webhooks/payment-gateway")
    parser.add_argument("--type", dest="event_type", default="charge.paid")
    parser.add_argument("--reference-id", default=None, help="Charge id (or gateway order id for order.paid)")
    parser.add_argument("--event-id", default=None)
    parser.add_argument("--file", dest="json_file", default=None, help="Send this raw JSON file instead")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same payload N times")
    parser.add_argument("--username", default=None)
    parser.add_argument("--password", default="")
    args = parser.parse_args()

    if args.json_file:
        payload = json.loads(Path(args.json_file).read_text())
    elif args.reference_id:
        payload = build_payload(args.event_type, args.reference_id, args.event_id)
    else:
        raise SystemExit("Provide --reference-id or --file")

    auth = (args.username, args.password) if args.username else None
    with httpx.Client(timeout=10.0, auth=auth) as client:
        for attempt in range(1, args.repeat + 1):
            resp = client.post(args.url, json=payload)
            print(f"delivery={attempt} status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
