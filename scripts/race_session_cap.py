#!/usr/bin/env python3
"""Concurrency check: fire parallel access requests for one user.

RUN:  python scripts/race_session_cap.py --token <JWT> --module-id <UUID>

Sends CONCURRENCY simultaneous POST /v1/video/modules/{id}/access calls
with the same bearer token.  With MAX_CONCURRENT_SESSIONS=1 exactly one
should come back 200 and the rest 409, however many API replicas sit
behind BASE_URL, as long as they share one REDIS_URL.

Prerequisites:
  - The API must be running: uvicorn video_access.main:app --port 8000
  - The token's subject must hold an active enrollment for the module's
    course, and have no session already open.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections import Counter

import httpx

BASE_URL = "http://localhost:8000"


async def _fire(base_url: str, token: str, module_id: str, n: int) -> Counter:
    headers = {"Authorization": f"Bearer {token}"}
    async with httpx.AsyncClient(base_url=base_url, timeout=10) as client:
        responses = await asyncio.gather(
            *(
                client.post(f"/v1/video/modules/{module_id}/access", headers=headers)
                for _ in range(n)
            )
        )
        statuses = Counter(r.status_code for r in responses)

        # Leave the user with no open session so the script can be re-run.
        for r in responses:
            if r.status_code == 200:
                await client.post(
                    f"/v1/video/sessions/{r.json()['session_id']}/end",
                    headers=headers,
                )
    return statuses


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--token", required=True)
    parser.add_argument("--module-id", required=True)
    parser.add_argument("--concurrency", type=int, default=10)
    parser.add_argument("--base-url", default=BASE_URL)
    args = parser.parse_args()

    statuses = asyncio.run(
        _fire(args.base_url, args.token, args.module_id, args.concurrency)
    )

    print(f"Results for {args.concurrency} concurrent requests:")
    for code, count in sorted(statuses.items()):
        print(f"  {code}: {count:>4}")

    if statuses.get(200, 0) != 1:
        print("UNEXPECTED: the session cap admitted", statuses.get(200, 0), "sessions")
        sys.exit(1)
    print("Session cap held: exactly one session was granted.")


if __name__ == "__main__":
    main()
