#!/usr/bin/env python3
"""
Booking lifecycle flow script.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Tokens are issued by the auth service; pass one for each party.

Usage:
    python scripts/flow_booking_lifecycle.py --customer-token <JWT> --provider-token <JWT> \
        --provider-id <UUID> --entity-id <UUID>
    python scripts/flow_booking_lifecycle.py ... --decline "Fully booked that day"
    python scripts/flow_booking_lifecycle.py ... --cancel

Flow:
    1. Customer creates booking (PENDING)
    2. Provider checks allowed actions
    3. Provider confirms (or declines with --decline)
    4. Customer cancels (--cancel) or provider completes
"""

import argparse
import json
import secrets
import sys

import httpx

BASE_URL = "http://localhost:8000"
CSRF_TOKEN = secrets.token_urlsafe(32)


def api_request(token: str, method: str, endpoint: str, data: dict | None = None) -> dict:
    """Make authenticated API request with the double-submit CSRF pair."""
    headers = {"Authorization": f"Bearer {token}", "X-CSRF-Token": CSRF_TOKEN}
    cookies = {"csrf_token": CSRF_TOKEN}
    url = f"{BASE_URL}{endpoint}"

    if method == "GET":
        response = httpx.get(url, headers=headers, cookies=cookies, timeout=10.0)
    elif method == "POST":
        response = httpx.post(url, headers=headers, cookies=cookies, json=data, timeout=10.0)
    else:
        raise ValueError(f"Unknown method: {method}")

    return {"status": response.status_code, "data": response.json() if response.text else {}}


def print_step(step: int, title: str):
    """Print step header."""
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_result(result: dict, fields: list[str] | None = None):
    """Print result, optionally filtering fields."""
    if result["status"] >= 400:
        print(f"ERROR ({result['status']}): {json.dumps(result['data'], indent=2)}")
        return False

    print(f"Status: {result['status']}")
    if fields:
        filtered = {k: result["data"].get(k) for k in fields if k in result["data"]}
        print(json.dumps(filtered, indent=2))
    else:
        print(json.dumps(result["data"], indent=2))
    return True


def main():
    parser = argparse.ArgumentParser(description="Booking lifecycle flow")
    parser.add_argument("--customer-token", required=True, help="Customer access token")
    parser.add_argument("--provider-token", required=True, help="Provider access token")
    parser.add_argument("--provider-id", required=True, help="Provider user UUID")
    parser.add_argument("--entity-id", required=True, help="Tour, guide or driver UUID")
    parser.add_argument("--entity-type", default="TOUR", choices=["TOUR", "GUIDE", "DRIVER"])
    parser.add_argument("--date", default=None, help="Requested date (YYYY-MM-DD)")
    parser.add_argument("--guests", type=int, default=2, help="Number of guests")
    parser.add_argument("--decline", metavar="REASON", help="Decline instead of confirming")
    parser.add_argument("--cancel", action="store_true", help="Customer cancels after confirmation")
    args = parser.parse_args()

    fields = ["id", "reference_number", "status", "version", "declined_reason", "cancelled_by"]

    # Step 1: Create booking
    print_step(1, "Create booking")
    booking_result = api_request(args.customer_token, "POST", "/api/v1/bookings", {
        "entity_type": args.entity_type,
        "entity_id": args.entity_id,
        "provider_user_id": args.provider_id,
        "date": args.date,
        "guests": args.guests,
    })
    if not print_result(booking_result, fields):
        sys.exit(1)

    booking_id = booking_result["data"]["id"]
    reference_number = booking_result["data"]["reference_number"]
    print(f"\nBooking created: {reference_number}")

    # Step 2: Allowed actions for the provider
    print_step(2, "Provider allowed actions")
    actions_result = api_request(args.provider_token, "GET", f"/api/v1/bookings/{booking_id}/actions")
    if not print_result(actions_result):
        sys.exit(1)

    # Step 3: Provider responds
    if args.decline:
        print_step(3, "Decline booking")
        decline_result = api_request(args.provider_token, "POST", f"/api/v1/bookings/{booking_id}/decline", {
            "declined_reason": args.decline,
        })
        if not print_result(decline_result, fields):
            sys.exit(1)
        print("\nBooking DECLINED")
        return

    print_step(3, "Confirm booking")
    confirm_result = api_request(args.provider_token, "POST", f"/api/v1/bookings/{booking_id}/confirm", {})
    if not print_result(confirm_result, fields):
        sys.exit(1)
    print("\nBooking CONFIRMED")

    # Step 4: Finish
    if args.cancel:
        print_step(4, "Cancel booking")
        final_result = api_request(args.customer_token, "POST", f"/api/v1/bookings/{booking_id}/cancel")
    else:
        print_step(4, "Complete booking")
        final_result = api_request(args.provider_token, "POST", f"/api/v1/bookings/{booking_id}/complete")
    if not print_result(final_result, fields):
        sys.exit(1)

    # Final summary
    print("\n" + "="*60)
    print("BOOKING LIFECYCLE FLOW COMPLETE")
    print("="*60)
    print(f"Booking:      {reference_number}")
    print(f"Final Status: {final_result['data']['status']}")


if __name__ == "__main__":
    main()
