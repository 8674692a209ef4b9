#!/usr/bin/env python3
"""End-to-end checks against a running deployment (demo login must be enabled)."""

import argparse
import dataclasses
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

import httpx


@dataclasses.dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str
    extra: str | None = None


def make_payload(amount: str = "1000.00", **overrides) -> dict:
    payload = {
        "amount": amount,
        "currency": "USD",
        "recipient_account": "12345678",
        "swift_code": "ABCDUS33",
        "reference": "smoke check",
        "confirmed": True,
    }
    payload.update(overrides)
    return payload


def submit(client: httpx.Client, base_url: str, key: str, payload: dict) -> httpx.Response:
    return client.post(f"{base_url}/v1/payments", json=payload, headers={"Idempotency-Key": key})


def run_health_check(client: httpx.Client, base_url: str) -> CheckResult:
    try:
        resp = client.get(f"{base_url}/")
        if resp.status_code != 200:
            return CheckResult("Health Check", False, f"Expected 200, got {resp.status_code}")
        if resp.json().get("status") != "HEALTHY":
            return CheckResult("Health Check", False, f"Expected HEALTHY, got {resp.json().get('status')!r}")
        return CheckResult("Health Check", True, "Health check endpoint working correctly")
    except httpx.HTTPError as exc:
        return CheckResult("Health Check", False, f"Exception: {exc}")


def run_login(client: httpx.Client, base_url: str, user_id: str) -> CheckResult:
    try:
        resp = client.post(f"{base_url}/v1/auth/login", json={"user_id": user_id})
        if resp.status_code != 200:
            return CheckResult("Login", False, f"Expected 200, got {resp.status_code} (is DEMO_LOGIN_ENABLED set?)")
        # Bearer header as well as the cookie, so plain-HTTP deployments work too.
        client.headers["Authorization"] = f"Bearer {resp.json()['token']}"
        return CheckResult("Login", True, f"Session opened for {user_id}")
    except httpx.HTTPError as exc:
        return CheckResult("Login", False, f"Exception: {exc}")


def run_quote(client: httpx.Client, base_url: str) -> CheckResult:
    try:
        resp = client.post(f"{base_url}/v1/payments/quote", json=make_payload())
        if resp.status_code != 200:
            return CheckResult("Quote", False, f"Expected 200, got {resp.status_code}")
        body = resp.json()
        if (body["fee"], body["total"]) != ("20.00", "1020.00"):
            return CheckResult("Quote", False, f"Unexpected fee/total {body['fee']}/{body['total']}")
        return CheckResult("Quote", True, "Fee and total match the 2% schedule", extra=body["confirmation_message"])
    except httpx.HTTPError as exc:
        return CheckResult("Quote", False, f"Exception: {exc}")


def run_submit_and_replay(client: httpx.Client, base_url: str) -> CheckResult:
    key = f"smoke-{uuid.uuid4().hex}"
    try:
        first = submit(client, base_url, key, make_payload())
        second = submit(client, base_url, key, make_payload())
        if first.status_code != 201:
            return CheckResult("Submit + Replay", False, f"Expected 201, got {first.status_code}: {first.text}")
        if second.status_code != 200 or not second.json().get("replayed"):
            return CheckResult("Submit + Replay", False, f"Replay returned {second.status_code}: {second.text}")
        if first.json()["transaction_id"] != second.json()["transaction_id"]:
            return CheckResult("Submit + Replay", False, "Replay returned a different transaction id")

        lookup = client.get(f"{base_url}/v1/transactions/{first.json()['transaction_id']}")
        if lookup.status_code != 200:
            return CheckResult("Submit + Replay", False, f"Lookup returned {lookup.status_code}")
        return CheckResult(
            "Submit + Replay",
            True,
            "Duplicate submission returned the original transaction",
            extra=f"transaction_id={first.json()['transaction_id']} status={lookup.json()['status']}",
        )
    except httpx.HTTPError as exc:
        return CheckResult("Submit + Replay", False, f"Exception: {exc}")


def run_idempotency_conflict(client: httpx.Client, base_url: str) -> CheckResult:
    key = f"smoke-{uuid.uuid4().hex}"
    try:
        submit(client, base_url, key, make_payload())
        resp = submit(client, base_url, key, make_payload(amount="999.00"))
        if resp.status_code != 409:
            return CheckResult("Idempotency Conflict", False, f"Expected 409, got {resp.status_code}")
        return CheckResult("Idempotency Conflict", True, f"Rejected with {resp.json()['error']}")
    except httpx.HTTPError as exc:
        return CheckResult("Idempotency Conflict", False, f"Exception: {exc}")


def run_precision_rejection(client: httpx.Client, base_url: str) -> CheckResult:
    try:
        resp = submit(client, base_url, f"smoke-{uuid.uuid4().hex}", make_payload(amount="10.005"))
        if resp.status_code != 422:
            return CheckResult("Precision Rejection", False, f"Expected 422, got {resp.status_code}")
        codes = [field["code"] for field in resp.json()["fields"]]
        if codes != ["precision"]:
            return CheckResult("Precision Rejection", False, f"Unexpected reason codes {codes}")
        return CheckResult("Precision Rejection", True, "Three decimal places rejected, not rounded")
    except httpx.HTTPError as exc:
        return CheckResult("Precision Rejection", False, f"Exception: {exc}")


def run_concurrent_duplicates(client: httpx.Client, base_url: str, concurrent_count: int) -> CheckResult:
    key = f"smoke-{uuid.uuid4().hex}"

    def post_one(_: int) -> httpx.Response:
        return submit(client, base_url, key, make_payload(amount="42.00"))

    try:
        with ThreadPoolExecutor(max_workers=concurrent_count) as ex:
            responses = list(ex.map(post_one, range(concurrent_count)))
        codes = sorted(resp.status_code for resp in responses)
        ids = {resp.json().get("transaction_id") for resp in responses if resp.status_code in (200, 201)}
        if codes.count(201) != 1 or len(ids) != 1:
            return CheckResult("Concurrent Duplicates", False, f"Status codes {codes}, ids {ids}")
        return CheckResult("Concurrent Duplicates", True, f"{concurrent_count} racing submissions produced one transaction")
    except httpx.HTTPError as exc:
        return CheckResult("Concurrent Duplicates", False, f"Exception: {exc}")


def print_report(results: list[CheckResult], total_seconds: float) -> int:
    passed = sum(1 for r in results if r.passed)
    total = len(results)
    verdict = "PASS" if passed == total else "FAIL"
    print(f"RESULT: {verdict} ({passed} / {total} checks passed)\n")
    for res in results:
        state = "PASS" if res.passed else "FAIL"
        print(f"- {state} | {res.name}")
        print(f"  - {res.detail}")
        if res.extra:
            print(f"  - {res.extra}")
    print(f"\nTotal time: {total_seconds:.1f}s")
    return 0 if passed == total else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Payment service smoke check")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Base URL of API")
    parser.add_argument("--user-id", default="smoke_user", help="User id for the demo login")
    parser.add_argument("--request-timeout-seconds", type=float, default=10.0, help="HTTP request timeout")
    parser.add_argument("--concurrent-count", type=int, default=5, help="Number of racing duplicate submissions")
    args = parser.parse_args()

    started = time.perf_counter()
    with httpx.Client(timeout=args.request_timeout_seconds) as client:
        results = [run_health_check(client, args.base_url), run_login(client, args.base_url, args.user_id)]
        if results[-1].passed:
            results += [
                run_quote(client, args.base_url),
                run_submit_and_replay(client, args.base_url),
                run_idempotency_conflict(client, args.base_url),
                run_precision_rejection(client, args.base_url),
                run_concurrent_duplicates(client, args.base_url, args.concurrent_count),
            ]
    total = time.perf_counter() - started
    return print_report(results, total)


if __name__ == "__main__":
    sys.exit(main())
