# scripts/generate_signals.py
"""
Cron entry point: trigger signal generation then a reconciliation tick for
each timeframe on a running dashboard.

    API_URL=http://localhost:8000/api/v1 SIGNAL_GENERATOR_API_KEY=... \
        python scripts/generate_signals.py 15m 1h
"""
import asyncio
import logging
import os
import sys

import httpx

logger = logging.getLogger("generate_signals")

DEFAULT_TIMEFRAMES = ["5m", "15m", "30m", "1h"]


async def run(base_url: str, api_key: str, timeframes) -> int:
    headers = {"Authorization": f"Bearer {api_key}"}
    failures = 0
    async with httpx.AsyncClient(base_url=base_url, headers=headers, timeout=90.0) as client:
        for timeframe in timeframes:
            for path in ("/signals/generate", "/signals/check"):
                try:
                    response = await client.post(path, params={"timeframe": timeframe})
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    failures += 1
                    logger.error(f"{path} {timeframe} failed: {e}")
                    continue
                logger.info(f"{path} {timeframe}: {response.json()}")
    return failures


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    timeframes = (argv if argv is not None else sys.argv[1:]) or DEFAULT_TIMEFRAMES
    base_url = os.environ.get("API_URL", "http://localhost:8000/api/v1")
    api_key = os.environ.get("SIGNAL_GENERATOR_API_KEY", "")
    if not api_key:
        logger.error("SIGNAL_GENERATOR_API_KEY is not set")
        return 2
    failures = asyncio.run(run(base_url, api_key, timeframes))
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
