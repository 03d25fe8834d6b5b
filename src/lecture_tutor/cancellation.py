"""
Cancellation for tutoring sessions.

Each session owns one AbortSignal. Raising it is synchronous and final: the
polling loop and the auto-advance scheduler check it before every network
call and wake up early from any wait. In-flight HTTP requests are not
interrupted; only what would happen after them is suppressed.
"""

import asyncio
import atexit
import logging
import signal
import threading
from typing import Callable, Iterable, List, Optional

from lecture_tutor.core.session_events import CancelReason

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class AbortSignal:
    """One-shot, thread-safe abort flag with an awaitable wait."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Optional[str] = None
        self._lock = threading.Lock()
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_abort(self, reason: str = "user") -> bool:
        """Raise the flag. Returns False if it was already raised."""
        with self._lock:
            if self._aborted:
                return False
            self._aborted = True
            self._reason = reason
            event, loop = self._event, self._loop

        if event is not None and loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                event.set()
            else:
                loop.call_soon_threadsafe(event.set)
        return True

    async def wait(self, timeout: float) -> bool:
        """
        Suspend for up to `timeout` seconds.

        Returns True if the signal is (or becomes) raised, False on timeout.
        """
        if self._aborted:
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._aborted

        running = asyncio.get_running_loop()
        with self._lock:
            if self._event is None or self._loop is not running:
                self._event = asyncio.Event()
                self._loop = running
            event = self._event
            if self._aborted:
                return True

        try:
            await asyncio.wait_for(event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return self._aborted


class CancellationCoordinator:
    """
    Owns the abort signal of the current session.

    Triggers: explicit stop, lecture switch, owner teardown, and process exit
    (the Python counterpart of a browser tab closing). A fresh signal is
    allocated for every session; an old signal is never reused.
    """

    def __init__(self) -> None:
        self._signal = AbortSignal()
        self._unload_callback: Optional[Callable[[], None]] = None
        self._signal_loop: Optional[asyncio.AbstractEventLoop] = None
        self._signals: List[int] = []

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    def new_signal(self) -> AbortSignal:
        """Allocate the signal for a new session, aborting any previous one."""
        if not self._signal.aborted:
            self._signal.raise_abort("superseded")
        self._signal = AbortSignal()
        return self._signal

    def abort(self, reason: CancelReason = "user") -> bool:
        raised = self._signal.raise_abort(reason)
        if raised:
            logger.info(f"Abort signal raised (reason: {reason})")
        return raised

    def install_unload_hook(self, on_unload: Callable[[], None]) -> None:
        """
        Run `on_unload` when the interpreter exits.

        Best effort only, like a browser `beforeunload` handler: the callback
        must set local state synchronously and must not wait for the network.
        """
        if self._unload_callback is not None:
            atexit.unregister(self._unload_callback)
        self._unload_callback = on_unload
        atexit.register(on_unload)

    def remove_unload_hook(self) -> None:
        """Undo `install_unload_hook` and `install_signal_handlers`."""
        if self._unload_callback is not None:
            atexit.unregister(self._unload_callback)
            self._unload_callback = None
        self.remove_signal_handlers()

    def install_signal_handlers(
        self,
        loop: asyncio.AbstractEventLoop,
        on_signal: Callable[[], None],
        signals: Iterable[int] = STOP_SIGNALS,
    ) -> List[int]:
        """
        Call `on_signal` from the event loop when the process is asked to stop.

        Returns the signals actually installed. Loops without signal support
        (Windows, non-main threads) install nothing.
        """
        installed = []
        for signum in signals:
            try:
                loop.add_signal_handler(signum, on_signal)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Signal handler for {signum} not installed: {e}")
                continue
            installed.append(signum)
        if installed:
            self._signal_loop = loop
            self._signals = installed
        return installed

    def remove_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        if not self._signal_loop.is_closed():
            for signum in self._signals:
                self._signal_loop.remove_signal_handler(signum)
        self._signal_loop = None
        self._signals = []
