"""
AI request gateway.

An asyncio channel from UI callers to a generative backend. A screen wires
one callback triple (loading, result, error) once, then calls send() from
anywhere. Every send() settles exactly once: on_result(text) or
on_error(exc), followed by on_loading(False).

Callbacks are shared across requests. To tell requests apart, send()
returns a RequestHandle carrying a monotonically increasing request id
and a future for that request alone; is_latest(handle) tells a caller
whether a newer request has been issued since.

Observed state follows last-settled-wins: when two requests overlap,
``state.result`` / ``state.error`` reflect whichever settled last,
independent of the order they were sent in. ``state.loading`` stays
True while any request is outstanding.
"""

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Union

from .errors import AttachmentError, BackendError, GatewayError
from .providers.base import AIBackend, Attachment

logger = logging.getLogger(__name__)

LoadingCallback = Callable[[bool], Any]
ResultCallback = Callable[[str], Any]
ErrorCallback = Callable[[BaseException], Any]


@dataclass(frozen=True)
class GatewayState:
    """
    Snapshot of the gateway lifecycle.

    Attributes:
        loading: True while any request is outstanding
        result: Text of the last request to settle successfully (cleared by a later error)
        error: Error of the last request to settle with a failure (cleared by a later success)
        request_id: Id of the last request to settle
    """
    loading: bool = False
    result: Optional[str] = None
    error: Optional[BaseException] = None
    request_id: Optional[int] = None


class RequestHandle:
    """
    One send() call.

    Awaiting the handle yields the backend text, or raises GatewayError
    with the original failure as ``__cause__``.

    Cancelling the handle (e.g. a wait_for timeout) only abandons the
    caller's wait; the request still settles through the callbacks.
    """

    def __init__(self, request_id: int, future: asyncio.Future):
        self.request_id = request_id
        self.future = future

    def done(self) -> bool:
        return self.future.done()

    def __await__(self):
        return self.future.__await__()

    def __repr__(self):
        status = "done" if self.future.done() else "pending"
        return f"RequestHandle(request_id={self.request_id}, {status})"


def _consume(future: asyncio.Future) -> None:
    # Failures are reported through on_error; mark them retrieved
    if not future.cancelled():
        future.exception()


class AIRequestGateway:
    """
    Single channel to a generative backend with a shared callback triple.

    Synchronous backends run in the loop's default executor. A backend
    that defines a coroutine ``agenerate`` is awaited directly.
    """

    def __init__(
        self,
        backend: AIBackend,
        *,
        on_loading: Optional[LoadingCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        max_attachment_bytes: Optional[int] = None,
    ):
        self._backend = backend
        self._on_loading = on_loading
        self._on_result = on_result
        self._on_error = on_error
        self._max_attachment_bytes = max_attachment_bytes
        self._next_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._tasks: set[asyncio.Task] = set()
        self._state = GatewayState()

    def bind(
        self,
        on_loading: Optional[LoadingCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> "AIRequestGateway":
        """Wire the callback triple (replaces any previous one)."""
        self._on_loading = on_loading
        self._on_result = on_result
        self._on_error = on_error
        return self

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def outstanding(self) -> int:
        """Number of requests sent but not yet settled."""
        return len(self._pending)

    @property
    def latest_request_id(self) -> Optional[int]:
        return self._next_id or None

    def is_latest(self, handle: RequestHandle) -> bool:
        """True if no request was sent after this one."""
        return handle.request_id == self._next_id

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send(
        self,
        prompt: str,
        attachment: Union[Attachment, bytes, None] = None,
    ) -> RequestHandle:
        """
        Start one request and return immediately.

        on_loading(True) is called before this returns. The outcome arrives
        on a later loop turn via on_result or on_error, then on_loading(False).
        A malformed attachment is reported through on_error without calling
        the backend.

        Raises:
            RuntimeError: If called outside a running event loop
        """
        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id

        future = loop.create_future()
        future.add_done_callback(_consume)
        self._pending[request_id] = future
        self._state = replace(self._state, loading=True)
        logger.debug("Request %d sent (attachment=%s)", request_id, attachment is not None)
        self._call("on_loading", self._on_loading, True)

        task = loop.create_task(self._run(request_id, prompt, attachment, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return RequestHandle(request_id, future)

    async def request(
        self,
        prompt: str,
        attachment: Union[Attachment, bytes, None] = None,
    ) -> str:
        """send() and await the text of that request."""
        return await self.send(prompt, attachment)

    async def wait_idle(self) -> None:
        """Wait until every outstanding request has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_attachment(self, attachment: Any) -> Optional[Attachment]:
        if attachment is None:
            return None
        if isinstance(attachment, (bytes, bytearray)):
            attachment = Attachment(data=bytes(attachment))
        if not isinstance(attachment, Attachment):
            raise AttachmentError(
                f"Unsupported attachment type: {type(attachment).__name__}"
            )
        attachment.validate(self._max_attachment_bytes)
        return attachment

    async def _generate(self, prompt: str, attachment: Optional[Attachment]) -> str:
        agenerate = getattr(self._backend, "agenerate", None)
        if agenerate is not None and inspect.iscoroutinefunction(agenerate):
            text = await agenerate(prompt, attachment)
        else:
            loop = asyncio.get_running_loop()
            text = await loop.run_in_executor(
                None, functools.partial(self._backend.generate, prompt, attachment)
            )
        if not isinstance(text, str):
            raise BackendError(
                f"Backend returned {type(text).__name__}, expected text"
            )
        return text

    async def _run(self, request_id: int, prompt: str, attachment: Any,
                   future: asyncio.Future) -> None:
        try:
            checked = self._check_attachment(attachment)
            text = await self._generate(prompt, checked)
        except asyncio.CancelledError:
            self._pending.pop(request_id, None)
            future.cancel()
            raise
        except Exception as e:
            self._settle(request_id, future, error=e)
        else:
            self._settle(request_id, future, text=text)

    def _settle(self, request_id: int, future: asyncio.Future, *,
                text: Optional[str] = None,
                error: Optional[BaseException] = None) -> None:
        self._pending.pop(request_id, None)
        self._state = GatewayState(
            loading=bool(self._pending),
            result=text,
            error=error,
            request_id=request_id,
        )
        try:
            if error is None:
                logger.debug("Request %d settled (%d chars)", request_id, len(text))
                if not future.done():
                    future.set_result(text)
                self._call("on_result", self._on_result, text)
            else:
                logger.warning("Request %d failed: %s", request_id, error)
                wrapped = GatewayError(f"Request {request_id} failed: {error}")
                wrapped.__cause__ = error
                if not future.done():
                    future.set_exception(wrapped)
                self._call("on_error", self._on_error, error)
        finally:
            self._call("on_loading", self._on_loading, False)

    @staticmethod
    def _call(name: str, callback: Optional[Callable], value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error("Gateway %s callback failed: %s", name, e, exc_info=True)
