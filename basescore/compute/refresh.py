"""
BaseScore — Score Refresh CLI
Score addresses from the command line and print JSON.

Commands:
    score ADDRESS [--force]   freshness-aware score for one address
    batch ADDRESS...          score many addresses (5 at a time)

Run manually:
    python -m basescore.compute.refresh score 0xabc...
    python -m basescore.compute.refresh score 0xabc... --force
    python -m basescore.compute.refresh batch 0xabc... 0xdef...
"""
import asyncio
import json
import sys
import time
from typing import List

import structlog

from basescore.compute.pipeline import open_collaborators, get_reputation, compute_batch
from basescore.config import configure_logging
from basescore.trust.engine import InvalidAddressError, PipelineError

logger = structlog.get_logger()

USAGE = "Usage: python -m basescore.compute.refresh [score ADDRESS [--force] | batch ADDRESS...]"


# ── Commands ──────────────────────────────────────

async def score_address(address: str, force_refresh: bool = False) -> int:
    async with open_collaborators() as ctx:
        try:
            reputation = await get_reputation(address, ctx, force_refresh=force_refresh)
        except InvalidAddressError as e:
            print(json.dumps({"error": "invalid_address", "detail": str(e)}))
            return 2
        except PipelineError as e:
            print(json.dumps({"error": "internal_error", "detail": str(e)}))
            return 1
    print(json.dumps(reputation.to_full(), indent=2, default=str))
    return 0


async def score_batch(addresses: List[str]) -> int:
    start = time.time()
    async with open_collaborators() as ctx:
        results = await compute_batch(addresses, ctx)

    failed = sum(1 for r in results if "error" in r)
    elapsed = round(time.time() - start, 1)
    logger.info("batch_complete", count=len(results), failed=failed, elapsed_seconds=elapsed)
    print(json.dumps(results, indent=2, default=str))
    return 1 if failed else 0


# ── CLI Entry Point ───────────────────────────────

async def main(argv: List[str] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(USAGE)
        return 1

    cmd, rest = args[0], args[1:]
    if cmd == "score" and rest:
        force = "--force" in rest
        addresses = [a for a in rest if a != "--force"]
        if len(addresses) != 1:
            print(USAGE)
            return 1
        return await score_address(addresses[0], force_refresh=force)
    if cmd == "batch" and rest:
        return await score_batch(rest)

    print(f"Unknown command: {' '.join(args)}")
    print(USAGE)
    return 1


def run() -> None:
    configure_logging()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
