# scripts/run_monitor.py
"""
Run the lending-pool health monitor.

    python scripts/run_monitor.py

Configuration comes from env/.env (see healthwatch/config.py).
"""
import asyncio, logging, sys

from healthwatch.alerts import build_sink
from healthwatch.config import ConfigError, load_settings
from healthwatch.monitor import HealthMonitor
from healthwatch.persistence import make_backend
from healthwatch.reader import BatchReader, MulticallReadProvider
from ingest.feed import run_feed

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")


async def main():
    try:
        settings = load_settings()
        settings.require_rpc()
    except ConfigError as e:
        logging.error(f"⛔️ Invalid configuration: {e}")
        sys.exit(2)

    cfg = settings.evaluation
    provider = MulticallReadProvider.from_url(settings.http_url, settings.multicall_address,
                                              timeout=settings.rpc_timeout)
    monitor = HealthMonitor(
        cfg,
        BatchReader(provider, cfg.pool_address, cfg.price_feed_address),
        sink=build_sink(settings),
        backend=make_backend(settings),
        checkpoint_key=settings.checkpoint_key,
        alert_id=settings.alert_id,
        emit_clears=settings.emit_clears,
    )
    monitor.initialize()
    logging.info(
        f"👀 Watching pool {cfg.pool_address}: HF < {cfg.risk_ratio_threshold}, "
        f"collateral > ${cfg.collateral_upper_threshold}, ignore debt < ${cfg.ignore_threshold}"
    )

    try:
        await run_feed(settings.ws_url, cfg.pool_address, monitor, cfg.pool_version)
    finally:
        monitor.checkpoint()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("👋 Interrupted by user, shutting down…")
