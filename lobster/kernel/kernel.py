"""
Dispatch kernel.

Drives two independent pipelines over the durable queue store:

    input adapter -> admission -> "incoming" -> agent -> "outgoing" -> output adapter

Each queued item is claimed by exactly one loop at a time, failures are
isolated to the item that caused them, and shutdown drains in-flight work
before stopping collaborators.
"""

import asyncio
import logging
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager

from pydantic import ValidationError as PacketDecodeError

from lobster.adapters.base import Adapter, AgentAdapter, InputAdapter, OutputAdapter
from lobster.config import get_settings
from lobster.constants import (
    INCOMING_QUEUE,
    OUTGOING_QUEUE,
    SPAN_DELIVER_RESPONSE,
    SPAN_PROCESS_MESSAGE,
    KernelState,
)
from lobster.errors import ConfigurationError
from lobster.kernel.channel import MessageChannel
from lobster.observability.logging import message_context
from lobster.observability.metrics import get_metrics
from lobster.observability.tracing import get_tracer
from lobster.queue.store import QueueStore
from lobster.reaper.main import Reaper
from lobster.types.common import QueueItem
from lobster.types.packets import MessagePacket, ResponsePacket

logger = logging.getLogger(__name__)


class DispatchKernel:
    """
    Orchestrates adapters around the incoming and outgoing queues.

    Features:
    - Admission control by kernel state and incoming queue depth
    - Crash recovery of orphaned items before the loops start
    - Per-item failure isolation in both loops
    - Graceful drain on shutdown, bounded by a timeout
    """

    def __init__(
        self,
        inputs: Sequence[InputAdapter],
        outputs: Sequence[OutputAdapter],
        agents: Sequence[AgentAdapter],
        queue_store: QueueStore | None = None,
        max_queue_depth: int | None = None,
        shutdown_timeout: float | None = None,
        poll_interval: float | None = None,
        drain_poll_interval: float | None = None,
        reaper: Reaper | None = None,
    ):
        """
        Initialize the kernel.

        Args:
            inputs: Input adapters, addressed by name at bootstrap.
            outputs: Output adapters, addressed by the source of each reply.
            agents: Agent adapters, addressed by name at bootstrap.
            queue_store: Durable queues. Defaults to the configured location.
            max_queue_depth: Pending incoming items above which messages are refused.
            shutdown_timeout: Seconds to wait for in-flight items on shutdown.
            poll_interval: Seconds a loop sleeps when its queue is empty.
            drain_poll_interval: Seconds between in-flight checks while draining.
            reaper: Orphan recovery and archive pruning.
        """
        settings = get_settings()

        self._inputs: dict[str, InputAdapter] = {a.name: a for a in inputs}
        self._outputs: dict[str, OutputAdapter] = {a.name: a for a in outputs}
        self._agents: dict[str, AgentAdapter] = {a.name: a for a in agents}

        self.queue_store = queue_store or QueueStore()
        self.reaper = reaper or Reaper(self.queue_store)
        self.max_queue_depth = max_queue_depth if max_queue_depth is not None else settings.max_queue_depth
        self.shutdown_timeout = (
            shutdown_timeout if shutdown_timeout is not None else settings.shutdown_timeout_seconds
        )
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.drain_poll_interval = (
            drain_poll_interval if drain_poll_interval is not None else settings.drain_poll_interval_seconds
        )

        self._state = KernelState.STOPPED
        self._active_jobs: set[str] = set()
        self._claims_in_flight = 0
        self._channel = MessageChannel()
        self._tasks: list[asyncio.Task] = []
        self._stopped = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def state(self) -> KernelState:
        return self._state

    @property
    def active_jobs(self) -> frozenset[str]:
        """Ids of queue items currently being handled."""
        return frozenset(self._active_jobs)

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    async def bootstrap(self, input_name: str, output_name: str, agent_name: str) -> None:
        """
        Start the selected collaborators and the dispatch loops.

        Args:
            input_name: Input adapter feeding the incoming queue.
            output_name: Output adapter to start (replies are still routed by source).
            agent_name: Agent adapter that processes incoming messages.

        Raises:
            ConfigurationError: The input adapter is unknown.
        """
        if self._state is not KernelState.STOPPED:
            raise RuntimeError(f"Kernel cannot bootstrap while {self._state}")

        logger.info(
            "Bootstrapping kernel",
            extra={"input": input_name, "output": output_name, "agent": agent_name},
        )

        input_adapter = self._inputs.get(input_name)
        if input_adapter is None:
            raise ConfigurationError(f"Unknown input adapter: {input_name}")

        output_adapter = self._outputs.get(output_name)
        if output_adapter is None:
            logger.error(f"Unknown output adapter: {output_name}")

        agent = self._agents.get(agent_name)
        if agent is None:
            logger.error(f"Unknown agent: {agent_name}; incoming messages will be dropped")

        await self.reaper.recover_orphans()
        for name in (INCOMING_QUEUE, OUTGOING_QUEUE):
            await self.queue_store.refresh_depth(name)

        if self._channel.closed:
            self._channel = MessageChannel()
        input_adapter.connect(self._channel)

        await self._start_adapter("input", input_adapter)
        if output_adapter is not None:
            await self._start_adapter("output", output_adapter)
        if agent is not None:
            await self._start_adapter("agent", agent)

        self._stopped.clear()
        self._state = KernelState.RUNNING

        self._tasks = [
            asyncio.create_task(self._intake_loop(), name="lobster-intake"),
            asyncio.create_task(self._ingest_loop(agent_name), name="lobster-ingest"),
            asyncio.create_task(self._dispatch_loop(), name="lobster-dispatch"),
            asyncio.create_task(self.reaper.start(), name="lobster-reaper"),
        ]

        logger.info(
            "Kernel running",
            extra={
                "incoming_depth": self.queue_store.depth(INCOMING_QUEUE),
                "outgoing_depth": self.queue_store.depth(OUTGOING_QUEUE),
            },
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def handle_incoming_message(self, message: MessagePacket) -> bool:
        """
        Admit a message into the incoming queue.

        Refuses (without queueing) while the kernel is not running or the
        incoming queue is at its maximum depth.

        Returns:
            True if the message was queued.
        """
        if self._state is not KernelState.RUNNING:
            logger.warning(
                f"Rejecting message {message.id} - kernel is {self._state}",
                extra={"message_id": message.id},
            )
            self._metrics.record_rejected("not_running")
            return False

        depth = self.queue_store.depth(INCOMING_QUEUE)
        if depth >= self.max_queue_depth:
            logger.warning(
                f"Rejecting message {message.id} - queue depth ({depth}) exceeds limit ({self.max_queue_depth})",
                extra={"message_id": message.id, "channel_id": message.channel_id},
            )
            self._metrics.record_rejected("queue_full")
            return False

        try:
            await self.queue_store.enqueue(INCOMING_QUEUE, message.model_dump(mode="json"))
        except OSError as e:
            logger.error(
                f"Could not queue message {message.id}: {e}",
                extra={"message_id": message.id},
            )
            self._metrics.record_rejected("store_error")
            return False

        return True

    async def _intake_loop(self) -> None:
        async for packet in self._channel:
            try:
                await self.handle_incoming_message(packet)
            except Exception as e:
                logger.exception(f"Error admitting message: {e}", extra={"message_id": packet.id})

    # ------------------------------------------------------------------
    # Incoming pipeline
    # ------------------------------------------------------------------

    async def _ingest_loop(self, agent_name: str) -> None:
        while self._state is KernelState.RUNNING:
            try:
                if not await self._process_next_incoming(agent_name):
                    await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.exception(f"Error in ingest loop: {e}")
                await asyncio.sleep(self.poll_interval)

        logger.info("Ingest loop stopped")

    async def _process_next_incoming(self, agent_name: str) -> bool:
        """
        Handle one incoming item.

        Returns:
            False if the queue had nothing to claim.
        """
        item = await self._claim(INCOMING_QUEUE)
        if item is None:
            return False

        with self._track(item.id):
            await self._handle_incoming_item(item, agent_name)
        return True

    async def _handle_incoming_item(self, item: QueueItem, agent_name: str) -> None:
        try:
            message = MessagePacket.model_validate(item.data)
        except PacketDecodeError as e:
            logger.error(
                f"Dropping undecodable incoming item: {e}",
                extra={"item_id": item.id},
            )
            await self.queue_store.complete(INCOMING_QUEUE, item.id, outcome="invalid")
            return

        agent = self._agents.get(agent_name)
        if agent is None:
            logger.error("No agent available!", extra={"message_id": message.id})
            await self.queue_store.complete(INCOMING_QUEUE, item.id, outcome="dropped")
            return

        with message_context(message_id=message.id, channel_id=message.channel_id):
            logger.info(f"[{message.source}] Processing message {message.id} via {agent.name}...")

            start_time = time.monotonic()
            outcome = "succeeded"
            try:
                with get_tracer().start_as_current_span(SPAN_PROCESS_MESSAGE) as span:
                    span.set_attribute("message_id", message.id)
                    span.set_attribute("channel_id", message.channel_id)
                    span.set_attribute("agent", agent.name)

                    reply = await agent.process(message)

                response = ResponsePacket.from_message(message, reply)
                await self.queue_store.enqueue(OUTGOING_QUEUE, response.model_dump(mode="json"))
            except Exception as e:
                outcome = "failed"
                logger.exception(f"Agent processing failed: {e}")

            self._metrics.record_processed(agent.name, outcome, time.monotonic() - start_time)
            await self.queue_store.complete(INCOMING_QUEUE, item.id, outcome=outcome)

    # ------------------------------------------------------------------
    # Outgoing pipeline
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        while self._state is KernelState.RUNNING:
            try:
                if not await self._process_next_outgoing():
                    await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.exception(f"Error in dispatch loop: {e}")
                await asyncio.sleep(self.poll_interval)

        logger.info("Dispatch loop stopped")

    async def _process_next_outgoing(self) -> bool:
        item = await self._claim(OUTGOING_QUEUE)
        if item is None:
            return False

        with self._track(item.id):
            await self._handle_outgoing_item(item)
        return True

    async def _handle_outgoing_item(self, item: QueueItem) -> None:
        try:
            response = ResponsePacket.model_validate(item.data)
        except PacketDecodeError as e:
            logger.error(
                f"Dropping undecodable outgoing item: {e}",
                extra={"item_id": item.id},
            )
            await self.queue_store.complete(OUTGOING_QUEUE, item.id, outcome="invalid")
            return

        output = self._outputs.get(response.source)
        if output is None:
            logger.warning(
                f"No output adapter found for source: {response.source}",
                extra={"message_id": response.original_message_id},
            )
            self._metrics.record_delivery(response.source, "no_adapter")
            await self.queue_store.complete(OUTGOING_QUEUE, item.id, outcome="dropped")
            return

        with message_context(message_id=response.original_message_id, channel_id=response.channel_id):
            outcome = "succeeded"
            try:
                with get_tracer().start_as_current_span(SPAN_DELIVER_RESPONSE) as span:
                    span.set_attribute("message_id", response.original_message_id)
                    span.set_attribute("output", output.name)

                    await output.send(response)
            except Exception as e:
                outcome = "failed"
                logger.exception(f"Delivery via {output.name} failed: {e}")

            self._metrics.record_delivery(output.name, outcome)
            await self.queue_store.complete(OUTGOING_QUEUE, item.id, outcome=outcome)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """
        Drain and stop.

        Stops inputs first, waits for in-flight items (bounded by the shutdown
        timeout), then stops outputs and agents. Calling it again while a
        shutdown is in progress, or before bootstrap, does nothing.
        """
        if self._state is not KernelState.RUNNING:
            return

        self._state = KernelState.DRAINING
        logger.info("Shutting down...")

        self._channel.close()
        await self._stop_all("input", self._inputs)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.shutdown_timeout

        while self._active_jobs or self._claims_in_flight:
            if loop.time() >= deadline:
                logger.warning(
                    f"Shutdown timeout reached with {len(self._active_jobs)} jobs remaining",
                    extra={"job_ids": sorted(self._active_jobs)},
                )
                break

            logger.info(f"Waiting for {len(self._active_jobs)} active jobs to complete...")
            await asyncio.sleep(self.drain_poll_interval)

        logger.info("All active jobs completed or timeout reached")

        await self._stop_all("output", self._outputs)
        await self._stop_all("agent", self._agents)
        await self.reaper.stop()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []

        self._state = KernelState.STOPPED
        self._stopped.set()
        logger.info("Shutdown complete")

    async def wait_stopped(self) -> None:
        """Block until a shutdown has completed."""
        await self._stopped.wait()

    async def _claim(self, queue: str) -> QueueItem | None:
        # Counted from the start of the dequeue until the item is tracked
        self._claims_in_flight += 1
        try:
            return await self.queue_store.dequeue(queue)
        finally:
            self._claims_in_flight -= 1

    @contextmanager
    def _track(self, job_id: str) -> Iterator[None]:
        self._active_jobs.add(job_id)
        try:
            yield
        finally:
            self._active_jobs.discard(job_id)

    async def _start_adapter(self, kind: str, adapter: Adapter) -> None:
        try:
            await adapter.start()
            logger.info(f"Started {kind} adapter: {adapter.name}")
        except Exception as e:
            logger.exception(f"Failed to start {kind} adapter {adapter.name}: {e}")

    async def _stop_all(self, kind: str, adapters: Mapping[str, Adapter]) -> None:
        for name, adapter in adapters.items():
            logger.info(f"Stopping {kind} adapter: {name}")
            try:
                await adapter.stop()
            except Exception as e:
                logger.exception(f"Failed to stop {kind} adapter {name}: {e}")
