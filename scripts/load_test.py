"""Load test: fire reciprocal match requests concurrently and verify rooms.

For every seeded pair, A -> B and B -> A are sent at the same instant.
Afterwards both sides must report ``matched`` with the same room id, and
the room must appear exactly once in each user's active matches.

Usage: python -m scripts.load_test [--pairs-file demo_pairs.json] [--base-url http://localhost:8000] [--repeat 3]
"""
import argparse
import asyncio
import json
import statistics
import sys
import time
from typing import Any

import httpx


DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_PAIRS_FILE = "demo_pairs.json"


async def send_request(
    client: httpx.AsyncClient, base_url: str, caller: str, target: str, item_id: int
) -> tuple[httpx.Response | None, float]:
    """POST one match request as ``caller``; returns the response and latency."""
    t0 = time.monotonic()
    try:
        resp = await client.post(
            f"{base_url}/api/v1/matches/request",
            json={"target_user_id": target, "item_id": item_id},
            headers={"X-User-Id": caller},
        )
    except Exception as e:
        print(f"  [ERROR] {caller[:8]} -> {target[:8]}: {e}")
        return None, time.monotonic() - t0
    return resp, time.monotonic() - t0


async def verify_pair(
    client: httpx.AsyncClient, base_url: str, pair: dict[str, Any]
) -> str | None:
    """Return an error description, or ``None`` if the pair is consistent."""
    a, b = pair["user_a"], pair["user_b"]
    rooms = []
    for viewer, other in ((a, b), (b, a)):
        resp = await client.get(
            f"{base_url}/api/v1/matches/status",
            params={"other_user_id": other},
            headers={"X-User-Id": viewer},
        )
        if resp.status_code != 200:
            return f"status {viewer[:8]}: HTTP {resp.status_code}"
        body = resp.json()
        if body["state"] != "matched":
            return f"status {viewer[:8]}: state={body['state']}"
        rooms.append(body["room_id"])

    if rooms[0] != rooms[1]:
        return f"room mismatch {rooms[0]} != {rooms[1]}"

    for viewer in (a, b):
        resp = await client.get(
            f"{base_url}/api/v1/matches/active", headers={"X-User-Id": viewer}
        )
        listed = [m["room_id"] for m in resp.json() if m["room_id"] == rooms[0]]
        if len(listed) != 1:
            return f"active {viewer[:8]}: room listed {len(listed)} times"
    return None


async def run_load_test(base_url: str, pairs: list[dict[str, Any]], repeat: int) -> dict[str, Any]:
    """Run the full load test pipeline."""
    print(f"\n{'='*60}")
    print(f"ReelMatch Load Test: {len(pairs)} pairs x {repeat} rounds")
    print(f"Target: {base_url}")
    print(f"{'='*60}\n")

    results = {
        "total": len(pairs),
        "consistent": 0,
        "http_errors": 0,
        "errors": [],
        "timings": [],
    }

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Phase 1: every pair reciprocates simultaneously, several times over
        print("[1/2] Sending reciprocal requests...")
        for round_no in range(repeat):
            calls = []
            for pair in pairs:
                a, b, item = pair["user_a"], pair["user_b"], pair["item_id"]
                calls.append(send_request(client, base_url, a, b, item))
                calls.append(send_request(client, base_url, b, a, item))
            outcomes = await asyncio.gather(*calls)
            for resp, dt in outcomes:
                results["timings"].append(dt)
                if resp is None or resp.status_code != 200:
                    results["http_errors"] += 1
            print(f"  Round {round_no + 1}/{repeat}: {len(outcomes)} requests")

        # Phase 2: both sides must agree on one room
        print("[2/2] Verifying pairs...")
        for pair in pairs:
            error = await verify_pair(client, base_url, pair)
            if error is None:
                results["consistent"] += 1
            else:
                results["errors"].append(f"{pair['user_a'][:8]}x{pair['user_b'][:8]}: {error}")

    # Summary
    print(f"{'='*60}")
    print("LOAD TEST RESULTS")
    print(f"{'='*60}")
    print(f"Consistent pairs: {results['consistent']}/{results['total']}")
    print(f"HTTP errors:      {results['http_errors']}")

    timings = results["timings"]
    if timings:
        print("\nrequest latency:")
        print(f"  mean:   {statistics.mean(timings):.3f}s")
        print(f"  median: {statistics.median(timings):.3f}s")
        print(f"  p95:    {sorted(timings)[int(len(timings)*0.95)]:.3f}s")
        print(f"  max:    {max(timings):.3f}s")

    if results["errors"]:
        print(f"\nErrors ({len(results['errors'])}):")
        for e in results["errors"][:10]:
            print(f"  - {e}")

    print(f"\n{'='*60}\n")
    return results


def main():
    parser = argparse.ArgumentParser(description="ReelMatch Load Test")
    parser.add_argument("--pairs-file", type=str, default=DEFAULT_PAIRS_FILE, help="JSON written by scripts.seed_demo")
    parser.add_argument("--base-url", type=str, default=DEFAULT_BASE_URL, help="API base URL")
    parser.add_argument("--repeat", type=int, default=3, help="Rounds of reciprocal requests per pair")
    args = parser.parse_args()

    with open(args.pairs_file) as fh:
        pairs = json.load(fh)

    results = asyncio.run(run_load_test(args.base_url, pairs, args.repeat))

    if results["consistent"] != results["total"] or results["http_errors"]:
        print("FAIL: inconsistent pairs or HTTP errors")
        sys.exit(1)
    print("PASS: every pair resolved to exactly one room")


if __name__ == "__main__":
    main()
