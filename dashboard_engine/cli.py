"""
Ouvidoria Dashboard — Command Line
───────────────────────────────────
    python -m dashboard_engine.cli --mode ttl /api/unit/123 /api/summary
    python -m dashboard_engine.cli --mode warm /api/distritos /api/dashboard-data
    python -m dashboard_engine.cli --mode serve
"""

import argparse
import asyncio
import logging
from typing import List

from dashboard_engine import config
from dashboard_engine.cache.ttl_config import ENDPOINT_TTLS, describe
from dashboard_engine.context import get_context

log = logging.getLogger("dash.cli")

WARM_DEFAULTS = ["/api/distritos", "/api/summary", "/api/dashboard-data"]


def print_ttls(keys: List[str]):
    keys = keys or list(ENDPOINT_TTLS)
    print("\n══════════════════════════════════════════")
    print("  Ouvidoria Dashboard — Cache TTLs")
    print("══════════════════════════════════════════")
    for key in keys:
        info = describe(key)
        flag = "  persistent" if info["persistent"] else ""
        print(f"  {key:<32} {info['ttl_ms']:>9} ms  {info['ttl_s']:>5} s  [{info['rule']}]{flag}")
    print("══════════════════════════════════════════\n")


async def warm(endpoints: List[str]) -> dict:
    ctx = get_context()
    try:
        results = await ctx.loader.load_many(endpoints or WARM_DEFAULTS, priority="high")
    finally:
        await ctx.aclose()
    ok = [r["endpoint"] for r in results if r["error"] is None]
    failed = {r["endpoint"]: str(r["error"]) for r in results if r["error"] is not None}
    for endpoint, error in failed.items():
        log.warning(f"Warm-up failed for {endpoint}: {error}")
    return {"warmed": ok, "failed": failed, "cached_keys": len(ctx.store.keys())}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Ouvidoria Dashboard cache and filter engine")
    parser.add_argument(
        "--mode",
        choices=["ttl", "warm", "serve"],
        default="ttl",
        help=(
            "ttl=show resolved TTLs for keys  "
            "warm=preload endpoints into the cache  "
            "serve=run the API server"
        ),
    )
    parser.add_argument("keys", nargs="*", help="endpoints / cache keys")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.mode == "ttl":
        print_ttls(args.keys)
    elif args.mode == "warm":
        result = asyncio.run(warm(args.keys))
        print(f"\nResult: {result}")
    else:
        import uvicorn
        uvicorn.run("app:app", host="0.0.0.0", port=config.PORT, reload=False, log_level="info")


if __name__ == "__main__":
    main()
