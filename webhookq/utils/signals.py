"""
Signal handling for graceful worker shutdown.
"""

import asyncio
import logging
import signal
from typing import List

logger = logging.getLogger(__name__)


class GracefulSignalHandler:
    """Sets an asyncio.Event on SIGINT/SIGTERM so the worker can drain and exit"""

    signals = (signal.SIGINT, signal.SIGTERM)

    def __init__(self):
        self._installed: List[signal.Signals] = []
        self._loop = None

    def setup_signal_handlers(self, shutdown_event: asyncio.Event) -> None:
        self._loop = asyncio.get_running_loop()

        def _request_shutdown(sig: signal.Signals):
            if shutdown_event.is_set():
                return
            logger.info(f"Received {sig.name}, shutting down gracefully...")
            shutdown_event.set()

        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, _request_shutdown, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug(f"Could not install handler for {sig.name}")

    def restore_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()
