import asyncio

from docintake.config.settings import Settings
from docintake.logging.logger import Log
from docintake.worker.sweep_runner import SweepRunner


class Worker:
    """Poll loop: sweep -> sleep when idle -> sweep."""

    def __init__(self, sweep_runner: SweepRunner, settings: Settings) -> None:
        self._sweep_runner = sweep_runner
        self._settings = settings

    async def run(self, max_iterations: int | None = None) -> None:
        """Main poll loop. Runs until cancelled.

        If max_iterations is set, stop after that many sweeps (for testing).
        """
        Log.info("Worker started, polling for documents")
        iterations = 0
        try:
            while max_iterations is None or iterations < max_iterations:
                handled = await self._try_sweep()
                iterations += 1
                if handled == 0 and (max_iterations is None or iterations < max_iterations):
                    Log.debug("No documents to process, sleeping")
                    await asyncio.sleep(self._settings.worker_poll_interval_seconds)
        except asyncio.CancelledError:
            Log.info("Worker shutting down gracefully")
            raise

    async def _try_sweep(self) -> int:
        """Run one sweep. Gracefully handle DB errors."""
        try:
            return await self._sweep_runner.run_once()
        except Exception as exc:
            Log.warning(f"Sweep failed, will retry: {exc}")
            return 0
