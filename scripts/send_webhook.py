"""
Send a signed sample payment notification to a running instance.

    python scripts/send_webhook.py --order-code sejamais2_experience_1610000000000
"""

import argparse
import json
import os

import httpx

from paylink.core.webhook_signature import sign_payload


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default="http://localhost:4000/api/webhook/pagarme")
    parser.add_argument("--secret", default=os.environ.get("PAYLINK_WEBHOOK_SECRET", ""))
    parser.add_argument("--event", default="order.paid")
    parser.add_argument("--order-code", default="sejamais2_experience_1610000000000")
    parser.add_argument("--payment-link-id", default="")
    parser.add_argument("--amount", type=int, default=39999)
    args = parser.parse_args()

    data = {"id": "evt_test_1", "order_code": args.order_code, "amount": args.amount}
    if args.payment_link_id:
        data["payment_link_id"] = args.payment_link_id
    body = json.dumps({"event": args.event, "data": data}).encode()

    headers = {"Content-Type": "application/json"}
    if args.secret:
        headers["X-Hub-Signature"] = sign_payload(body, args.secret)

    resp = httpx.post(args.url, content=body, headers=headers, timeout=10.0)
    print("status", resp.status_code)
    print(resp.text)


if __name__ == "__main__":
    main()
