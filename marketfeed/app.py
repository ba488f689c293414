"""
Feed runner.

Subscribes to the instruments listed in FEED_INSTRUMENTS, logs every
price and order book update, and persists prices until SIGINT/SIGTERM.

Usage:
    FEED_INSTRUMENTS=<token_id>,c:<condition_id> python -m marketfeed.app
"""

import logging
import signal
import sys
import threading
from typing import Optional

from .config import FeedConfig
from .registry import SubscriptionHandle
from .service import MarketFeedService
from .types import InstrumentKey, OrderBookUpdate, PriceUpdate

logger = logging.getLogger(__name__)

METRICS_LOG_INTERVAL_S = 30.0


class FeedApplication:
    """
    Runs a MarketFeedService for a fixed instrument list.

    Lifecycle:
    - start: validate config, start the service, subscribe, connect
    - run: wait for a shutdown signal, logging metrics periodically
    - stop: unsubscribe, flush, close
    """

    def __init__(self, config: FeedConfig, service: Optional[MarketFeedService] = None):
        self._config = config
        self._service = service
        self._handles: list[SubscriptionHandle] = []
        self._stop_event = threading.Event()
        self._running = False

    @property
    def service(self) -> Optional[MarketFeedService]:
        return self._service

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the application."""
        logger.info("Starting feed application...")

        errors = self._config.validate()
        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ValueError(f"Invalid configuration: {errors}")

        if self._service is None:
            self._service = MarketFeedService(self._config)
        self._service.start()

        if not self._config.instruments:
            logger.warning("No instruments configured (set FEED_INSTRUMENTS)")

        for key in self._config.instruments:
            self._subscribe(key)

        self._service.connect()
        self._running = True
        logger.info(f"Feed application started with {len(self._config.instruments)} instruments")

    def _subscribe(self, key: InstrumentKey) -> None:
        self._handles.append(self._service.subscribe(key, self._on_price))
        if key.keyed_by_token:
            self._handles.append(self._service.subscribe_order_book(key, self._on_book))

    def _on_price(self, update: PriceUpdate) -> None:
        logger.info(f"{update.key}: yes={update.yes:.4f} no={update.no:.4f}")

    def _on_book(self, update: OrderBookUpdate) -> None:
        bid = update.best_bid
        ask = update.best_ask
        logger.debug(
            f"{update.key}: book bid={bid.price if bid else None} ask={ask.price if ask else None} "
            f"({len(update.bids)}x{len(update.asks)} levels)"
        )

    def stop(self) -> None:
        """Stop the application."""
        logger.info("Stopping feed application...")
        self._stop_event.set()

        for handle in self._handles:
            handle.unsubscribe()
        self._handles.clear()

        if self._service:
            self._service.stop()

        self._running = False
        logger.info("Feed application stopped")

    def run(self) -> None:
        """Run until shutdown signal."""

        def signal_handler(signum, frame):
            logger.warning(f"Received signal {signum} - shutting down")
            self._stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            self.start()
            while not self._stop_event.wait(METRICS_LOG_INTERVAL_S):
                logger.info(f"Metrics: {self._service.get_metrics().as_dict()}")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.stop()


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point."""
    argv = sys.argv[1:] if argv is None else argv

    # Setup logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Load config (optional .env path as first argument)
    if argv:
        config = FeedConfig.from_env_file(argv[0])
    else:
        config = FeedConfig.from_env()

    # Override log level if configured
    if config.log_level:
        logging.getLogger().setLevel(config.log_level.upper())

    app = FeedApplication(config)
    try:
        app.run()
    except ValueError:
        # Config errors are logged by start()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
