"""Management CLI for onboarding operations.

Usage:
    python -m medstint.cli reap              # Run one session reaper pass
    python -m medstint.cli funnel [DAYS]     # Print funnel metrics (default 30 days)
"""

import asyncio
import sys
from datetime import timedelta

from medstint.dependencies import get_analytics_emitter, get_session_store
from medstint.onboarding.funnel import compute_funnel
from medstint.services.reaper import run_reaper_pass


async def reap():
    result = await run_reaper_pass(get_session_store(), get_analytics_emitter())
    print(f"  Abandoned: {len(result.abandoned)}")
    print(f"  Expired:   {len(result.expired)}")
    print(f"  Purged:    {result.purged}")


async def funnel(days: int = 30):
    store = get_session_store()
    since = store.now() - timedelta(days=days)
    metrics = compute_funnel(await store.list_sessions(since=since), since=since)

    print(f"Sessions since {since:%Y-%m-%d}: {metrics.total_sessions}")
    for status, count in sorted(metrics.by_status.items()):
        print(f"  {status:<10} {count}")
    print(f"Completion rate: {metrics.completion_rate:.1%}")
    if metrics.average_completion_minutes is not None:
        print(f"Average time to complete: {metrics.average_completion_minutes} min")
    print("Step reach:")
    for step, count in metrics.step_reach.items():
        print(f"  {step:<24} {count}")
    if metrics.drop_off:
        print("Drop-off:")
        for step, count in metrics.drop_off.items():
            print(f"  {step:<24} {count}")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "reap":
        asyncio.run(reap())
    elif cmd == "funnel":
        asyncio.run(funnel(int(sys.argv[2]) if len(sys.argv) > 2 else 30))
    else:
        print("Usage: python -m medstint.cli [reap|funnel [DAYS]]")
