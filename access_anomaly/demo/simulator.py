from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Dict, List, Optional, Tuple

from ..audit import HttpAuditSink, InMemoryAuditSink
from ..core.models import AccessDecision, GuardConfig
from ..engine import AccessGuard

# (headers, user_id) pairs replayed against the guard in order
Request = Tuple[Dict[str, str], str]


def _headers(ip: str, country: str = "US", user_agent: str = "Mozilla/5.0") -> Dict[str, str]:
    return {"x-forwarded-for": ip, "user-agent": user_agent, "cf-ipcountry": country}


def build_scenarios() -> Dict[str, List[Request]]:
    """
    Three canned traffic shapes:

      benign          one user, one device, a handful of requests.
      shared_account  one account used from 7 IPs in 3 countries.
      scraper         one IP hammering the API 60 times.
    """
    return {
        "benign": [(_headers("203.0.113.10"), "alice") for _ in range(5)],
        "shared_account": [
            (_headers(f"192.168.1.{i}", country=("US", "CA", "UK")[i % 3]), "bob")
            for i in range(1, 8)
        ],
        "scraper": [
            (_headers("198.51.100.7", user_agent="python-requests/2.31"), "carol")
            for _ in range(60)
        ],
    }


async def run_simulation(
    guard: AccessGuard,
    requests: List[Request],
    start: Optional[float] = None,
    inter_request_seconds: float = 0.5,
) -> List[AccessDecision]:
    """
    Replay requests through ``guard.check_request`` with synthetic timestamps.
    In production the web framework calls ``check_request`` from middleware.
    """
    now = start if start is not None else time.time()
    decisions: List[AccessDecision] = []
    for i, (headers, user_id) in enumerate(requests):
        decisions.append(
            await guard.check_request(headers, user_id, now=now + i * inter_request_seconds)
        )
    return decisions


async def main() -> None:
    """Replay every scenario and print the verdicts. Set AUDIT_URL to post audit records."""
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING"))

    stale = os.getenv("STALE_PATTERN_SECONDS")
    config = GuardConfig(stale_pattern_seconds=float(stale) if stale else None)

    audit_url = os.getenv("AUDIT_URL")
    memory_sink = InMemoryAuditSink()
    sink = HttpAuditSink(audit_url) if audit_url else memory_sink

    guard = AccessGuard(config=config, audit_sink=sink)
    # Fixed afternoon start so the unusual-hours detector stays quiet.
    start = time.mktime((2024, 1, 15, 14, 0, 0, 0, 0, -1))

    await guard.start()
    try:
        for name, requests in build_scenarios().items():
            decisions = await run_simulation(guard, requests, start=start)
            last = decisions[-1]
            blocked = sum(1 for d in decisions if not d.allowed)
            print(f"[{name}] requests={len(decisions)} blocked={blocked} final_allowed={last.allowed}")
            for alert in last.alerts:
                print(f"  - {alert.type.value} ({alert.severity.value}) {alert.details}")
    finally:
        await guard.stop()

    if sink is memory_sink:
        print(f"\nAudit records written: {len(memory_sink.records)}")


def run_main() -> None:
    """Synchronous entry point for the console script."""
    asyncio.run(main())  # pragma: no cover - exercised by console script


if __name__ == "__main__":  # pragma: no cover
    run_main()
