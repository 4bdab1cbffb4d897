import asyncio
import logging
import signal
from typing import Awaitable, List

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


async def run_until_shutdown(work: Awaitable[None], service: str) -> None:
    """Run `work` until it finishes or SIGTERM/SIGINT arrives.

    A signal cancels the work and this coroutine returns normally so the
    caller's cleanup runs and the process exits 0. Cancellation coming from
    outside (not a signal) still propagates.
    """
    loop = asyncio.get_running_loop()
    runner = asyncio.ensure_future(work)
    received: List[int] = []

    def _stop(signum: int) -> None:
        logging.info(f"Received {signal.Signals(signum).name}, stopping {service}")
        received.append(signum)
        runner.cancel()

    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, _stop, sig)
            installed.append(sig)
        except NotImplementedError:
            # No loop signal support (Windows).
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(_stop, signum))

    try:
        await runner
    except asyncio.CancelledError:
        if not received:
            raise
        logging.info("Shutting down...")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
