"""Guaranteed teardown of the proxy process and its socket directory."""

import atexit
import logging
import signal
from contextlib import contextmanager
from typing import Callable, Iterator

logger = logging.getLogger(__name__)

# SIGINT already surfaces as KeyboardInterrupt
HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)
DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def _raise_exit(signum, frame) -> None:
    raise SystemExit(128 + signum)


def _raise_for_signal(signum: int) -> None:
    if signum == signal.SIGINT:
        raise KeyboardInterrupt
    raise SystemExit(128 + signum)


@contextmanager
def _signals_deferred() -> Iterator[list[int]]:
    """Record interrupts instead of raising them while the block runs."""
    received: list[int] = []
    previous = {}

    def _record(signum, frame) -> None:
        logger.warning(f"Signal {signum} received during cleanup; finishing teardown first")
        received.append(signum)

    for signum in DEFERRED_SIGNALS:
        try:
            previous[signum] = signal.signal(signum, _record)
        except ValueError:
            # Not the main thread
            break
    try:
        yield received
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


class CleanupSequencer:
    """Runs the process-stop step, then the directory-removal step, once.

    The two slots are filled as the resources are acquired. Whatever was
    registered runs on every exit path: leaving the ``with`` block normally,
    an exception, a termination signal, or interpreter exit. Interrupts that
    arrive while the steps run are held back until both have finished.
    """

    def __init__(self) -> None:
        self._process_stop: Callable[[], None] | None = None
        self._directory_removal: Callable[[], None] | None = None
        self._done = False
        self._previous_handlers: dict[int, object] = {}

    def register_process_stop(self, action: Callable[[], None]) -> None:
        self._process_stop = action

    def register_directory_removal(self, action: Callable[[], None]) -> None:
        self._directory_removal = action

    @property
    def done(self) -> bool:
        return self._done

    def run(self) -> None:
        """Execute the registered steps. Later calls do nothing.

        Raises:
            KeyboardInterrupt: If SIGINT arrived while the steps ran.
            SystemExit: If SIGTERM or SIGHUP arrived while the steps ran.
        """
        if self._done:
            return
        self._done = True

        with _signals_deferred() as received:
            for name, action in (
                ("stop proxy", self._process_stop),
                ("remove socket directory", self._directory_removal),
            ):
                if action is None:
                    continue
                try:
                    action()
                except Exception as e:
                    logger.warning(f"Cleanup step '{name}' failed: {e}")
                    logger.debug("Cleanup failure details", exc_info=True)

        if received:
            _raise_for_signal(received[0])

    def _install_signal_handlers(self) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, _raise_exit)
            except ValueError:
                # Not the main thread
                logger.debug(f"Cannot install handler for {signum!r}")

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def __enter__(self) -> "CleanupSequencer":
        self._install_signal_handlers()
        atexit.register(self.run)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.run()
        finally:
            atexit.unregister(self.run)
            self._restore_signal_handlers()
