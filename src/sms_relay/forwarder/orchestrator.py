import asyncio
import itertools
from datetime import datetime
from typing import Callable, List, Optional, Set

from loguru import logger

from sms_relay.common.metrics import metrics
from sms_relay.common.models import (
    Credential,
    Failure,
    InboundMessage,
    OutboundResult,
    SmsEvent,
    Success,
    local_now,
)
from sms_relay.common.store import ConfigStore
from sms_relay.forwarder.client import TelegramClient, describe_error


TIME_FORMAT = "%Y-%m-%d %H:%M:%S%z"

STATUS_NO_PAYLOAD = "No SMS payload detected."
UNKNOWN_ERROR = "Unknown Error"


class KeepAlive:
    """Handle that keeps the event source waiting until an event is finished.

    Released exactly once; later calls are ignored.
    """

    def __init__(self, tracker: "WorkTracker", event_id: int):
        self.tracker = tracker
        self.event_id = event_id
        self.released = False

    def release(self) -> bool:
        if self.released:
            logger.warning(f"Keep-alive for event {self.event_id} already released")
            return False
        self.released = True
        self.tracker._on_release(self)
        return True


class WorkTracker:
    """Counts events that are still in flight."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._outstanding = 0
        self._idle: Optional[asyncio.Event] = None

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def acquire(self) -> KeepAlive:
        keep_alive = KeepAlive(self, next(self._ids))
        self._outstanding += 1
        metrics.outstanding_work.set(self._outstanding)
        if self._idle is not None:
            self._idle.clear()
        return keep_alive

    def _on_release(self, keep_alive: KeepAlive) -> None:
        self._outstanding -= 1
        metrics.outstanding_work.set(self._outstanding)
        logger.debug(f"Event {keep_alive.event_id} finished, {self._outstanding} outstanding")
        if self._outstanding == 0 and self._idle is not None:
            self._idle.set()

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every handle is released. Returns False on timeout."""
        if self._outstanding == 0:
            return True
        if self._idle is None:
            self._idle = asyncio.Event()
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timed out with {self._outstanding} event(s) still in flight")
            return False


StatusObserver = Callable[[], None]


class StatusNotifier:
    """Zero-payload "status changed" signal. Observers re-read the store."""

    def __init__(self):
        self._observers: List[StatusObserver] = []

    def subscribe(self, observer: StatusObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: StatusObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def announce(self) -> None:
        for observer in list(self._observers):
            try:
                observer()
            except Exception as e:
                logger.error(f"Status observer {observer!r} failed: {e}")


def format_message(message: InboundMessage, time_format: str = TIME_FORMAT) -> str:
    return (
        f"From: {message.sender}\n"
        f"Time: {message.received_at.strftime(time_format)}\n"
        f"\n"
        f"{message.body}"
    )


class ForwardingOrchestrator:
    def __init__(
        self,
        store: ConfigStore,
        client: TelegramClient,
        notifier: Optional[StatusNotifier] = None,
        tracker: Optional[WorkTracker] = None,
        clock: Callable[[], datetime] = local_now,
        time_format: str = TIME_FORMAT,
    ):
        self.store = store
        self.client = client
        self.notifier = notifier or StatusNotifier()
        self.tracker = tracker or WorkTracker()
        self.clock = clock
        self.time_format = time_format
        # The loop only keeps weak references to tasks
        self._in_flight: Set["asyncio.Task[None]"] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            logger.warning("Forwarding task was cancelled before it finished")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Forwarding task failed: {error!r}")

    def timestamp(self) -> str:
        return self.clock().strftime(self.time_format)

    def record(self, status: str) -> None:
        self.store.save_last_status(status)
        self.notifier.announce()

    def dispatch(self, event: SmsEvent) -> Optional["asyncio.Task[None]"]:
        """Handle one message-received event.

        The checks run inline. When the message is forwarded, the send runs
        as a separate task which is returned so callers may await it.
        Must be called from a running event loop.
        """
        keep_alive = self.tracker.acquire()
        handed_off = False
        try:
            if not self.store.is_forwarding_enabled():
                metrics.sms_events_total.labels(outcome="disabled").inc()
                logger.info("Forwarding disabled, ignoring SMS")
                self.record(f"{self.timestamp()}: Forwarding disabled, SMS ignored")
                return None

            credential = self.store.load_credential()
            if credential is None:
                metrics.sms_events_total.labels(outcome="unconfigured").inc()
                logger.warning("Received SMS but the API token or chat id is missing")
                self.record(
                    f"{self.timestamp()}: Incomplete settings: Missing API token or Chat ID"
                )
                return None

            message = event.to_message()
            if message is None:
                metrics.sms_events_total.labels(outcome="empty").inc()
                logger.warning("Received SMS event without any message parts")
                self.record(STATUS_NO_PAYLOAD)
                return None

            text = format_message(message, self.time_format)
            self.record(f"{self.timestamp()}  from {message.sender} - Forwarding…")

            task = asyncio.get_running_loop().create_task(
                self._deliver(credential, message.sender, text, keep_alive)
            )
            handed_off = True
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)
            metrics.sms_events_total.labels(outcome="dispatched").inc()
            logger.info(f"Forwarding SMS from {message.sender} (event {keep_alive.event_id})")
            return task
        finally:
            if not handed_off:
                keep_alive.release()

    async def _deliver(
        self,
        credential: Credential,
        sender: str,
        text: str,
        keep_alive: KeepAlive,
    ) -> None:
        try:
            try:
                result: OutboundResult = await self.client.send(
                    credential.token, credential.destination_id, text
                )
            except Exception as e:
                logger.error(f"Unexpected error forwarding SMS from {sender}: {e!r}")
                result = Failure(reason=describe_error(e))

            if isinstance(result, Success):
                self.record(f"{self.timestamp()} - From {sender} - Success")
            else:
                reason = result.reason or UNKNOWN_ERROR
                self.record(f"{self.timestamp()} from {sender} - Failed: {reason}")
        finally:
            keep_alive.release()
