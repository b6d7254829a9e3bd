"""
Process entry point.

Wires the bundled adapters into a dispatch kernel, starts it, and exits
once the kernel has drained and stopped after SIGTERM or SIGINT.
"""

import asyncio
import logging
import signal

from lobster.adapters import HttpInputAdapter, OpencodeAgent, WebhookOutputAdapter
from lobster.config import Settings, get_settings
from lobster.kernel import DispatchKernel
from lobster.observability.logging import setup_logging
from lobster.observability.metrics import setup_metrics
from lobster.observability.tracing import setup_tracing
from lobster.queue import QueueStore
from lobster.reaper import Reaper
from lobster.sessions import SessionStore

logger = logging.getLogger(__name__)


def build_kernel(settings: Settings) -> DispatchKernel:
    """
    Construct the kernel with every bundled adapter registered.

    Args:
        settings: Application settings.

    Returns:
        DispatchKernel: A stopped kernel, ready for ``bootstrap``.
    """
    queue_store = QueueStore(settings.queue_base_path)
    sessions = SessionStore(
        settings.session_store_path,
        persist_mode=settings.session_persist_mode,
        debounce_seconds=settings.session_save_debounce_seconds,
    )

    return DispatchKernel(
        inputs=[HttpInputAdapter()],
        outputs=[WebhookOutputAdapter(url=settings.output_webhook_url)],
        agents=[
            OpencodeAgent(
                session_store=sessions,
                retry_policy=settings.retry_policy(),
            )
        ],
        queue_store=queue_store,
        reaper=Reaper(queue_store),
    )


def install_signal_handlers(kernel: DispatchKernel) -> set[asyncio.Task]:
    """
    Shut the kernel down on SIGTERM or SIGINT.

    Returns:
        The live shutdown tasks. Each is held here until it finishes.
    """
    loop = asyncio.get_running_loop()
    tasks: set[asyncio.Task] = set()

    def request_shutdown() -> None:
        task = asyncio.create_task(kernel.shutdown())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_shutdown)

    return tasks


async def run_async() -> None:
    """Run the relay until a shutdown signal has been handled."""
    setup_logging()
    setup_metrics()
    setup_tracing()

    settings = get_settings()
    kernel = build_kernel(settings)

    shutdown_tasks = install_signal_handlers(kernel)

    await kernel.bootstrap(
        settings.input_adapter,
        settings.output_adapter,
        settings.agent_adapter,
    )
    logger.info(
        "Lobster relay running",
        extra={
            "input": settings.input_adapter,
            "output": settings.output_adapter,
            "agent": settings.agent_adapter,
        },
    )

    await kernel.wait_stopped()
    await asyncio.gather(*shutdown_tasks)
    logger.info("Lobster relay exited")


def run() -> None:
    """Run the relay."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
