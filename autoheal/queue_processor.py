"""
Queue Processor — Background threads that consume named queues.

One consumer thread per queue: lease a batch, dispatch each message to the
registered handler, ack on success. A handler exception retries the message
with exponential backoff (2**retry_count seconds) until max_retries, then
moves it to the queue's dead-letter queue.
"""

import threading
import traceback

from autoheal import settings
from autoheal.job_queue import ack_job, move_to_dead_letter, read_jobs, retry_job
from autoheal.logger import log


def backoff_seconds(retry_count: int) -> int:
    return 2 ** retry_count


class QueueConsumer:
    """Polling worker bound to one queue and one handler."""

    def __init__(self, queue_name, handler, visibility_timeout, batch_size, poll_interval):
        self.queue_name = queue_name
        self.handler = handler
        self.visibility_timeout = visibility_timeout
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.running = False
        self.thread = None
        self._wake = threading.Event()

    def start(self):
        """Start the consumer thread."""
        if self.running:
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(
            target=self._run_loop, name=f"queue-{self.queue_name}", daemon=True,
        )
        self.thread.start()

    def stop(self, timeout: float = None):
        """Stop the consumer thread and wait for the current batch to finish."""
        self.running = False
        self._wake.set()
        if self.thread is not None and timeout is not None:
            self.thread.join(timeout)

    def _run_loop(self):
        """Main polling loop."""
        while self.running:
            try:
                self.process_jobs()
            except Exception as e:
                log("queue.loop_error", level="error", queue=self.queue_name, error=str(e))
            self._wake.wait(self.poll_interval)

    def process_jobs(self) -> int:
        """Lease and process one batch. Returns the number of messages handled."""
        jobs = read_jobs(self.queue_name, self.visibility_timeout, self.batch_size)
        handled = 0
        for job in jobs:
            if not self.running and self.thread is not None:
                break
            self._process_job(job)
            handled += 1
        return handled

    def _process_job(self, job: dict):
        """Run the handler for one message with retry/dead-letter support."""
        job_id = job["id"]
        try:
            self.handler(job.get("payload") or {})
        except Exception as e:
            self._handle_failure(job, e)
            return
        ack_job(job_id)
        log("queue.job_completed", queue=self.queue_name, job_id=job_id)

    def _handle_failure(self, job: dict, exc: Exception):
        retry_count = job.get("retry_count", 0)
        max_retries = job.get("max_retries", settings.QUEUE_MAX_RETRIES)
        log("queue.job_failed", level="error", queue=self.queue_name,
            job_id=job["id"], retry_count=retry_count, error=str(exc),
            traceback=traceback.format_exc())
        if retry_count < max_retries:
            retry_job(job["id"], str(exc), backoff_seconds(retry_count))
        else:
            move_to_dead_letter(job, str(exc))


class QueueProcessor:
    """Registry of queue consumers keyed by queue name."""

    def __init__(self):
        self.consumers = {}
        self._lock = threading.Lock()

    def start_processor(self, queue_name, handler, visibility_timeout=None,
                        batch_size=None, poll_interval=None, start=True):
        """Register a handler for a queue and (by default) start its thread.

        Re-registering a queue replaces its consumer.
        """
        consumer = QueueConsumer(
            queue_name,
            handler,
            visibility_timeout if visibility_timeout is not None else settings.VALIDATION_VISIBILITY_TIMEOUT,
            batch_size if batch_size is not None else settings.QUEUE_BATCH_SIZE,
            poll_interval if poll_interval is not None else settings.QUEUE_POLL_INTERVAL,
        )
        with self._lock:
            previous = self.consumers.get(queue_name)
            if previous is not None:
                previous.stop()
            self.consumers[queue_name] = consumer
        if start:
            consumer.start()
        log("queue.processor_registered", queue=queue_name,
            visibility_timeout=consumer.visibility_timeout,
            batch_size=consumer.batch_size, started=start)
        return consumer

    def stop_processor(self, queue_name, timeout: float = None) -> bool:
        with self._lock:
            consumer = self.consumers.pop(queue_name, None)
        if consumer is None:
            return False
        consumer.stop(timeout)
        log("queue.processor_stopped", queue=queue_name)
        return True

    def process_jobs(self, queue_name) -> int:
        """Process one batch for a registered queue on the calling thread."""
        consumer = self.consumers.get(queue_name)
        if consumer is None:
            raise KeyError(f"No processor registered for queue: {queue_name}")
        return consumer.process_jobs()

    def is_running(self, queue_name) -> bool:
        consumer = self.consumers.get(queue_name)
        return bool(consumer and consumer.running)

    def shutdown(self, timeout: float = 5.0):
        """Stop every consumer."""
        for queue_name in list(self.consumers):
            self.stop_processor(queue_name, timeout)
