#!/usr/bin/env python3
"""Drive a running pipeline through a duplicate, a rejection and a DLQ retry.

Start the server first:
    python -m subscription_pipeline --port 8080

Usage:
    PIPELINE_URL=http://localhost:8080 python tests/manual/drive_pipeline.py
"""

import os
import sys
import uuid

import httpx

BASE_URL = os.environ.get("PIPELINE_URL", "http://localhost:8080")


def notify(client, notification_id, transaction_id, status, notification_type):
    response = client.post(
        "/v1/notifications",
        json={
            "notification_id": notification_id,
            "platform": "google_play",
            "notification_type": notification_type,
            "original_transaction_id": transaction_id,
            "user_id": "manual-user",
            "product_id": "premium.monthly",
            "status": status,
        },
    )
    body = response.json()
    print(f"  {notification_type:<30} -> {response.status_code} {body.get('outcome')}")
    return body


def main():
    transaction_id = f"GPA.manual-{uuid.uuid4().hex[:12]}"
    print(f"Pipeline: {BASE_URL}")
    print(f"Transaction: {transaction_id}\n")

    with httpx.Client(base_url=BASE_URL, timeout=10.0) as client:
        try:
            client.get("/health").raise_for_status()
        except httpx.HTTPError as e:
            print(f"✗ Pipeline is not reachable: {e}")
            return 1

        print("Notifications:")
        notify(client, "manual-1", transaction_id, "active", "SUBSCRIPTION_PURCHASED")
        notify(client, "manual-1", transaction_id, "active", "SUBSCRIPTION_PURCHASED")
        notify(client, "manual-2", transaction_id, "expired", "SUBSCRIPTION_EXPIRED")
        rejected = notify(client, "manual-3", transaction_id, "paused", "SUBSCRIPTION_PAUSED")

        if rejected.get("outcome") != "failed":
            print("\n✗ Expected the paused notification to be rejected")
            return 1
        print(f"\nDead letter entry: {rejected['dlq_entry_id']}")

        print("\nRetries:")
        for minutes in (1, 2, 4, 8, 16):
            client.post("/v1/maintenance/time/advance", json={"minutes": minutes}).raise_for_status()
            run = client.post("/v1/maintenance/dlq/process").json()
            print(
                f"  +{minutes:>2} min: processed={run['processed']} "
                f"failed={run['failed']} expired={run['expired']} pending={run['pending']}"
            )

        client.post("/v1/maintenance/time/reset").raise_for_status()

        print("\nDLQ summary:")
        for row in client.get("/v1/monitoring/dlq").json():
            print(f"  {row}")

    print("\n✓ Done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
