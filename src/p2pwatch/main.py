import asyncio
import logging
import signal

from .config import load_config
from .engine import Watcher
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def run() -> int:
    setup_logging()
    try:
        config = load_config()
    except Exception as e:
        logger.error("failed_to_load_config err=%s", e)
        return 1
    setup_logging(getattr(logging, config.log_level, logging.INFO), config.log_file or None)

    watcher = Watcher(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _stop(*_):
        watcher.stop()

    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, _stop)
        except NotImplementedError:
            pass

    try:
        loop.run_until_complete(watcher.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(loop.shutdown_default_executor())
        loop.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(run())
