"""Sign and POST a gateway webhook to the monetization service.

Useful for replaying a missed `charge.success` or for duplicate-delivery
testing against a running stack.
"""

import argparse
import json
from pathlib import Path

import httpx

from wavepay.services.monetization.gateway import sign_payload


def main() -> None:
    """Parse CLI args, sign the body and deliver it N times."""

    parser = argparse.ArgumentParser(description="Deliver a signed gateway webhook.")
    parser.add_argument("--url", default="http://localhost:8005/payments/webhook")
    parser.add_argument("--secret", required=True, help="Gateway secret key used for the HMAC")
    parser.add_argument("--reference", default=None, help="Build a charge.success event for this reference")
    parser.add_argument("--file", dest="json_file", default=None, help="Path to a raw JSON event body")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same body this many times")
    args = parser.parse_args()

    if bool(args.reference) == bool(args.json_file):
        raise SystemExit("Provide exactly one of --reference or --file")

    if args.reference:
        raw_body = json.dumps({"event": "charge.success", "data": {"reference": args.reference}}).encode("utf-8")
    else:
        raw_body = Path(args.json_file).read_bytes()

    headers = {"content-type": "application/json", "x-paystack-signature": sign_payload(raw_body, args.secret)}
    with httpx.Client(timeout=10.0) as client:
        for attempt in range(1, args.repeat + 1):
            resp = client.post(args.url, content=raw_body, headers=headers)
            print(f"delivery={attempt} status_code={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
