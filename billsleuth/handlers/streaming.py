"""Streaming adapter: runs an investigation on a worker thread and hands
fragments to the consumer through a bounded queue."""

import logging
import queue
import threading
from typing import Iterator

from billsleuth.errors import ExecutionError
from billsleuth.handlers.investigate import Fragment, InvestigationHandler

logger = logging.getLogger(__name__)


class StreamingAdapter:
    """Turns one request into a lazy, ordered, finite fragment stream.

    The stream always ends with a single done or error fragment unless the
    consumer stops reading first. The worker blocks while the queue is full.
    Once the consumer is gone, a model call already under way runs to its
    final reply and the worker stops before the next model or tool call.

    The worker is a daemon thread so a stuck model call cannot keep the
    process alive at exit. Closing the stream waits up to ``join_timeout``
    seconds for it to finish.
    """

    def __init__(
        self,
        handler: InvestigationHandler,
        buffer_size: int = 64,
        poll_interval: float = 0.1,
        join_timeout: float = 5.0,
    ):
        """Initialize streaming adapter.

        Args:
            handler: Investigation handler that produces fragments
            buffer_size: Queue capacity between worker and consumer
            poll_interval: Seconds between cancellation checks while blocked
            join_timeout: Seconds to wait for the worker when the stream closes
        """
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")

        self.handler = handler
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval
        self.join_timeout = join_timeout

    def stream(self, message: str) -> Iterator[Fragment]:
        """Stream fragments for one request.

        Nothing runs until the first fragment is requested.

        Args:
            message: The operator's request

        Yields:
            Fragments, ending with done or error
        """
        fragments: queue.Queue = queue.Queue(maxsize=self.buffer_size)
        cancelled = threading.Event()

        worker = threading.Thread(
            target=self._produce,
            args=(message, fragments, cancelled),
            name="billsleuth-run",
            daemon=True,
        )
        worker.start()

        try:
            while True:
                fragment = fragments.get()
                yield fragment
                if fragment.terminal:
                    return
        finally:
            cancelled.set()
            worker.join(timeout=self.join_timeout)
            if worker.is_alive():
                logger.warning(
                    "Run worker still busy %.1fs after the stream closed", self.join_timeout
                )

    def _produce(
        self, message: str, fragments: queue.Queue, cancelled: threading.Event
    ) -> None:
        events = self.handler.iter_events(message, cancelled=cancelled)
        terminal = Fragment.done()

        try:
            for fragment in events:
                if not self._put(fragments, fragment, cancelled):
                    logger.info("Stream consumer detached; finishing the current call")
                    for _ in events:
                        pass
                    logger.info("Run stopped after consumer detached")
                    return
        except ExecutionError as e:
            terminal = Fragment.error(str(e))
        except Exception as e:
            logger.exception("Unexpected failure while streaming")
            terminal = Fragment.error(f"Unexpected error: {e}")

        self._put(fragments, terminal, cancelled)

    def _put(
        self, fragments: queue.Queue, fragment: Fragment, cancelled: threading.Event
    ) -> bool:
        while not cancelled.is_set():
            try:
                fragments.put(fragment, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False
