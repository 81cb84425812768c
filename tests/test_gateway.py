"""Tests for larder.gateway: lifecycle callbacks, correlation and ordering."""

import asyncio
import logging

import pytest

from larder.errors import AttachmentError, BackendError, GatewayError
from larder.gateway import AIRequestGateway, GatewayState
from larder.providers.base import Attachment

from tests.conftest import EchoBackend, ScriptedBackend


class Recorder:
    """Collects the callback triple in call order."""

    def __init__(self):
        self.events = []

    def on_loading(self, value):
        self.events.append(("loading", value))

    def on_result(self, text):
        self.events.append(("result", text))

    def on_error(self, error):
        self.events.append(("error", error))

    def gateway(self, backend, **kwargs):
        return AIRequestGateway(
            backend,
            on_loading=self.on_loading,
            on_result=self.on_result,
            on_error=self.on_error,
            **kwargs,
        )


def test_send_requires_running_loop():
    gw = AIRequestGateway(EchoBackend())
    with pytest.raises(RuntimeError):
        gw.send("hello")
    assert gw.outstanding == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_success(self):
        rec = Recorder()
        backend = ScriptedBackend({"hi": "hello back"})
        gw = rec.gateway(backend)

        handle = gw.send("hi")
        assert rec.events == [("loading", True)]
        assert gw.state.loading is True
        assert gw.outstanding == 1

        assert await handle == "hello back"
        assert rec.events == [("loading", True), ("result", "hello back"), ("loading", False)]
        assert gw.state == GatewayState(False, "hello back", None, handle.request_id)
        assert gw.outstanding == 0

    @pytest.mark.asyncio
    async def test_backend_failure(self):
        rec = Recorder()
        failure = BackendError("model down")
        gw = rec.gateway(ScriptedBackend({"hi": failure}))

        handle = gw.send("hi")
        with pytest.raises(GatewayError) as exc_info:
            await handle
        assert exc_info.value.__cause__ is failure
        assert rec.events == [("loading", True), ("error", failure), ("loading", False)]
        assert gw.state.error is failure
        assert gw.state.result is None

    @pytest.mark.asyncio
    async def test_sync_backend_runs_in_executor(self):
        backend = EchoBackend()
        gw = AIRequestGateway(backend)
        assert await gw.request("hi") == "HI"
        assert backend.calls == [("hi", None)]

    @pytest.mark.asyncio
    async def test_non_text_result_is_an_error(self):
        rec = Recorder()
        gw = rec.gateway(ScriptedBackend({"hi": 42}))
        with pytest.raises(GatewayError):
            await gw.send("hi")
        assert isinstance(rec.events[1][1], BackendError)

    @pytest.mark.asyncio
    async def test_attachment_is_forwarded(self):
        backend = ScriptedBackend()
        gw = AIRequestGateway(backend)
        attachment = Attachment(b"\x89PNG", "receipt.png")
        await gw.request("scan", attachment)
        assert backend.calls == [("scan", attachment)]

    @pytest.mark.asyncio
    async def test_raw_bytes_attachment_is_wrapped(self):
        backend = ScriptedBackend()
        gw = AIRequestGateway(backend)
        await gw.request("scan", b"data")
        assert backend.calls[0][1].data == b"data"


class TestMalformedAttachment:
    @pytest.mark.asyncio
    async def test_wrong_type_reported_next_turn(self):
        rec = Recorder()
        backend = ScriptedBackend()
        gw = rec.gateway(backend)

        handle = gw.send("scan", "not-bytes")
        assert rec.events == [("loading", True)]
        with pytest.raises(GatewayError):
            await handle
        assert isinstance(rec.events[1][1], AttachmentError)
        assert rec.events[2] == ("loading", False)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_empty_attachment(self):
        rec = Recorder()
        gw = rec.gateway(ScriptedBackend())
        with pytest.raises(GatewayError):
            await gw.send("scan", Attachment(b"", "empty.png"))
        assert isinstance(rec.events[1][1], AttachmentError)

    @pytest.mark.asyncio
    async def test_oversize_attachment(self):
        rec = Recorder()
        backend = ScriptedBackend()
        gw = rec.gateway(backend, max_attachment_bytes=4)
        with pytest.raises(GatewayError):
            await gw.send("scan", Attachment(b"12345", "big.jpg"))
        assert backend.calls == []


class TestOverlappingRequests:
    @pytest.mark.asyncio
    async def test_later_send_settles_first(self):
        """A then B sent; B settles first, A last: A's result is final."""
        rec = Recorder()
        backend = ScriptedBackend({"A": "result A", "B": "result B"})
        backend.hold("A")
        backend.hold("B")
        gw = rec.gateway(backend)

        a = gw.send("A")
        b = gw.send("B")
        assert gw.outstanding == 2
        assert gw.is_latest(b) and not gw.is_latest(a)

        backend.release("B")
        assert await b == "result B"
        assert gw.state.result == "result B"
        assert gw.state.loading is True

        backend.release("A")
        assert await a == "result A"
        assert gw.state == GatewayState(False, "result A", None, a.request_id)
        assert rec.events == [
            ("loading", True),
            ("loading", True),
            ("result", "result B"),
            ("loading", False),
            ("result", "result A"),
            ("loading", False),
        ]

    @pytest.mark.asyncio
    async def test_settle_in_send_order(self):
        backend = ScriptedBackend({"A": "result A", "B": "result B"})
        backend.hold("A")
        backend.hold("B")
        gw = AIRequestGateway(backend)

        a = gw.send("A")
        b = gw.send("B")
        backend.release("A")
        await a
        backend.release("B")
        await b
        assert gw.state.result == "result B"
        assert gw.state.request_id == b.request_id

    @pytest.mark.asyncio
    async def test_later_error_clears_result(self):
        backend = ScriptedBackend({"A": "ok", "B": BackendError("nope")})
        backend.hold("B")
        gw = AIRequestGateway(backend)

        b = gw.send("B")
        a = gw.send("A")
        await a
        assert gw.state.result == "ok"
        backend.release("B")
        with pytest.raises(GatewayError):
            await b
        assert gw.state.result is None
        assert isinstance(gw.state.error, BackendError)

    @pytest.mark.asyncio
    async def test_abandoned_wait_still_settles_callbacks(self):
        rec = Recorder()
        backend = ScriptedBackend({"slow": "late"})
        backend.hold("slow")
        gw = rec.gateway(backend)

        handle = gw.send("slow")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(handle, 0.01)
        assert handle.future.cancelled()

        backend.release("slow")
        await gw.wait_idle()
        assert rec.events == [("loading", True), ("result", "late"), ("loading", False)]
        assert gw.state == GatewayState(False, "late", None, handle.request_id)
        assert gw.outstanding == 0

    @pytest.mark.asyncio
    async def test_abandoned_wait_still_reports_error(self):
        rec = Recorder()
        failure = BackendError("gave up")
        backend = ScriptedBackend({"slow": failure})
        backend.hold("slow")
        gw = rec.gateway(backend)

        handle = gw.send("slow")
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(handle, 0.01)
        backend.release("slow")
        await gw.wait_idle()
        assert rec.events == [("loading", True), ("error", failure), ("loading", False)]

    @pytest.mark.asyncio
    async def test_each_handle_gets_its_own_answer(self):
        backend = ScriptedBackend({"A": "for A", "B": "for B"})
        gw = AIRequestGateway(backend)
        results = await asyncio.gather(gw.send("A"), gw.send("B"))
        assert results == ["for A", "for B"]

    @pytest.mark.asyncio
    async def test_wait_idle(self):
        backend = ScriptedBackend()
        gw = AIRequestGateway(backend)
        handles = [gw.send(f"p{i}") for i in range(3)]
        await gw.wait_idle()
        assert all(h.done() for h in handles)
        assert gw.state.loading is False
        assert [h.request_id for h in handles] == [1, 2, 3]


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_callback_exception_is_logged_not_rerouted(self, caplog):
        events = []

        def bad_result(text):
            raise ValueError("render failed")

        gw = AIRequestGateway(
            ScriptedBackend({"hi": "ok"}),
            on_loading=lambda v: events.append(("loading", v)),
            on_result=bad_result,
            on_error=lambda e: events.append(("error", e)),
        )
        with caplog.at_level(logging.ERROR, logger="larder.gateway"):
            assert await gw.send("hi") == "ok"
        assert events == [("loading", True), ("loading", False)]
        assert "render failed" in caplog.text

    @pytest.mark.asyncio
    async def test_bind_replaces_callbacks(self):
        seen = []
        gw = AIRequestGateway(ScriptedBackend({"hi": "ok"}), on_result=lambda t: seen.append("old"))
        gw.bind(on_result=lambda t: seen.append(t))
        await gw.request("hi")
        assert seen == ["ok"]

    @pytest.mark.asyncio
    async def test_no_callbacks_needed(self):
        gw = AIRequestGateway(ScriptedBackend({"hi": BackendError("x")}))
        handle = gw.send("hi")
        await gw.wait_idle()
        assert handle.done()
        assert isinstance(gw.state.error, BackendError)
