"""Tests for the channel controller.

These tests verify:
1. The Init handshake and its Idle acknowledgement
2. Dispatch of inbound Signal, Response and PropertyUpdate messages
3. Request/response correlation
4. Faulty inbound traffic is logged and dropped, never fatal
"""

import asyncio

import pytest

from pywebchannel import (
    InProcessTransport,
    MessageEvent,
    QObject,
    RemoteCallError,
    TransportError,
    WebChannel,
    connect,
    connect_async,
)

from .fixtures.fake_host import (
    COUNT,
    FRIEND,
    GREET,
    MESSAGE_RECEIVED,
    TITLE,
    TITLE_CHANGED,
    FakeHost,
    backend_descriptor,
    make_descriptor,
    object_reference,
)


class TestTransportValidation:
    """The only fatal error: a transport that cannot send."""

    def test_missing_send_raises(self):
        class NoSend:
            onmessage = None

        with pytest.raises(TransportError):
            WebChannel(NoSend())

    def test_non_callable_send_raises(self):
        class BadSend:
            send = "not callable"
            onmessage = None

        with pytest.raises(TransportError):
            WebChannel(BadSend())

    def test_none_transport_raises(self):
        with pytest.raises(TransportError):
            WebChannel(None)

    def test_transport_error_is_type_error(self):
        with pytest.raises(TypeError):
            WebChannel(object())

    def test_installs_message_handler(self, host):
        channel = WebChannel(host.transport)
        assert host.transport.onmessage == channel.handle_message


class TestHandshake:
    """Tests for the Init/Idle handshake."""

    def test_init_request_sent_on_construction(self, host):
        WebChannel(host.transport)
        assert host.sent == [{"type": 3, "id": 0}]

    def test_init_then_idle_only(self, host):
        """Two published objects produce exactly [Init] then [Idle]."""
        order = []
        WebChannel(host.transport, lambda channel: order.append(list(host.types)))

        host.respond(0, {"first": backend_descriptor(), "second": make_descriptor()})

        assert host.types == [3, 4]
        # Ready ran after Init went out and before Idle did.
        assert order == [[3]]

    def test_ready_callback_receives_populated_channel(self, host):
        seen = {}

        def on_ready(channel):
            seen["names"] = sorted(channel.objects)
            seen["title"] = channel.objects["backend"].title

        channel = connect(host.transport, on_ready)
        host.respond(0, {"backend": backend_descriptor(), "other": make_descriptor()})

        assert seen == {"names": ["backend", "other"], "title": "initial"}
        assert isinstance(channel.objects["backend"], QObject)

    def test_malformed_published_object_skipped(self, host, caplog):
        ready = []
        WebChannel(host.transport, lambda channel: ready.append(sorted(channel.objects)))

        host.respond(0, {"backend": backend_descriptor(), "broken": {"methods": [["noIndex"]]}})

        assert ready == [["backend"]]
        assert host.types == [3, 4]
        assert "Cannot publish object broken from malformed data" in caplog.text

    def test_published_objects_keyed_by_name(self, channel):
        assert channel.objects["backend"].object_id == "backend"

    def test_init_properties_unwrapped_after_all_objects_exist(self, host):
        """A property may reference another published object declared later."""
        first = make_descriptor(properties=[[0, "peer", None, object_reference("second")]])
        channel = host.connect({"first": first, "second": make_descriptor()})

        assert channel.objects["first"].peer is channel.objects["second"]

    def test_init_properties_may_embed_new_objects(self, host):
        child = make_descriptor(properties=[[0, "name", None, "child"]])
        parent = make_descriptor(properties=[[0, "child", None, object_reference("c1", child)]])

        channel = host.connect({"parent": parent})

        assert channel.objects["parent"].child is channel.objects["c1"]
        assert channel.objects["c1"].name == "child"

    def test_ready_callback_error_does_not_block_idle(self, host, caplog):
        def on_ready(channel):
            raise RuntimeError("boom")

        WebChannel(host.transport, on_ready)
        host.respond(0, {"backend": backend_descriptor()})

        assert host.types == [3, 4]
        assert "init callback failed" in caplog.text

    def test_malformed_init_reply_logged(self, host, caplog):
        WebChannel(host.transport)
        host.respond(0, ["not", "a", "mapping"])

        assert host.types == [3]
        assert "Init response carried no object descriptors" in caplog.text

    @pytest.mark.asyncio
    async def test_connect_async_waits_for_handshake(self, host):
        async def answer_init():
            await asyncio.sleep(0)
            host.respond(0, {"backend": backend_descriptor()})

        answering = asyncio.create_task(answer_init())
        channel = await connect_async(host.transport)
        await answering

        assert channel.objects["backend"].title == "initial"
        assert host.types == [3, 4]


class TestExec:
    """Tests for the outbound request helper."""

    def test_fire_and_forget_sends_as_is(self, host, channel):
        assert channel.exec({"type": 4}) is None
        assert host.sent == [{"type": 4}]

    def test_with_callback_assigns_id(self, host, channel):
        call_id = channel.exec({"type": 6, "object": "backend", "method": GREET, "args": []}, lambda d: None)

        assert host.sent[-1]["id"] == call_id
        assert call_id in channel.pending

    def test_reserved_id_rejected(self, host, channel, caplog):
        result = channel.exec({"type": 6, "id": 7}, lambda d: None)

        assert result is None
        assert host.sent == []
        assert len(channel.pending) == 0
        assert "Cannot exec message with property id" in caplog.text

    def test_string_payload_sent_verbatim(self, host, channel):
        channel.send('{"type":4}')
        assert host.raw == ['{"type":4}']

    def test_send_failure_releases_id(self, channel):
        def failing_send(data):
            raise ConnectionError("gone")

        channel.transport._sender = failing_send

        with pytest.raises(ConnectionError):
            channel.exec({"type": 6}, lambda d: None)
        assert len(channel.pending) == 0

    def test_debug_message(self, host, channel):
        channel.debug("hello host")
        assert host.sent == [{"type": 5, "data": "hello host"}]


class TestResponseDispatch:
    """Tests for Response routing."""

    def test_completion_receives_raw_payload(self, host, channel):
        received = []
        call_id = channel.exec({"type": 6}, received.append)

        host.respond(call_id, {"nested": [1, 2]})

        assert received == [{"nested": [1, 2]}]
        assert call_id not in channel.pending

    def test_response_delivered_once(self, host, channel, caplog):
        received = []
        call_id = channel.exec({"type": 6}, received.append)

        host.respond(call_id, 1)
        host.respond(call_id, 2)

        assert received == [1]
        assert f"Callback not found for response id: {call_id}" in caplog.text

    def test_unknown_response_dropped(self, host, channel, caplog):
        host.respond(12345, "x")
        assert "Callback not found for response id: 12345" in caplog.text

    def test_completion_error_contained(self, host, channel, caplog):
        def explode(data):
            raise ValueError("bad")

        call_id = channel.exec({"type": 6}, explode)
        host.respond(call_id, 1)

        assert "Completion for response id" in caplog.text
        # Channel keeps working.
        assert channel.exec({"type": 6}, lambda d: None) is not None


class TestCallCorrelation:
    """Concurrent method calls resolve independently."""

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, host, channel):
        backend = channel.objects["backend"]
        futures = [backend.greet(name) for name in ("a", "b", "c")]

        requests = host.of_type(6)
        ids = [request["id"] for request in requests]
        assert len(set(ids)) == 3
        assert [request["args"] for request in requests] == [["a"], ["b"], ["c"]]

        for call_id, name in reversed(list(zip(ids, ("a", "b", "c")))):
            host.respond(call_id, f"hello {name}")

        assert await asyncio.gather(*futures) == ["hello a", "hello b", "hello c"]

    @pytest.mark.asyncio
    async def test_missing_payload_rejects(self, host, channel):
        future = channel.objects["backend"].greet("x")
        host.respond(host.of_type(6)[-1]["id"])

        with pytest.raises(RemoteCallError):
            await future

    @pytest.mark.asyncio
    async def test_null_payload_resolves_none(self, host, channel):
        future = channel.objects["backend"].greet("x")
        host.respond(host.of_type(6)[-1]["id"], None)

        assert await future is None

    @pytest.mark.asyncio
    async def test_future_not_resolved_inline(self, host, channel):
        future = channel.objects["backend"].greet("x")
        assert not future.done()


class TestSignalDispatch:
    """Tests for inbound Signal messages."""

    def test_callbacks_run_in_order_with_positional_args(self, host, channel):
        calls = []
        signal = channel.objects["backend"].messageReceived
        signal.connect(lambda *args: calls.append(("first", args)))
        signal.connect(lambda *args: calls.append(("second", args)))

        host.emit("backend", MESSAGE_RECEIVED, "hi", 2)

        assert calls == [("first", ("hi", 2)), ("second", ("hi", 2))]

    def test_signal_args_unwrapped(self, host, channel):
        received = []
        channel.objects["backend"].messageReceived.connect(received.append)

        host.emit("backend", MESSAGE_RECEIVED, object_reference("backend"))

        assert received == [channel.objects["backend"]]

    def test_unknown_object_dropped(self, host, channel, caplog):
        host.emit("ghost", 1, "x")
        assert "Unhandled signal: ghost::1" in caplog.text

    def test_callback_error_contained(self, host, channel, caplog):
        calls = []

        def broken(*args):
            raise RuntimeError("nope")

        channel.objects["backend"].messageReceived.connect(broken)
        channel.objects["backend"].messageReceived.connect(calls.append)

        host.emit("backend", MESSAGE_RECEIVED, "x")

        assert calls == ["x"]
        assert "failed" in caplog.text

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_scheduled(self, host, channel):
        done = asyncio.Event()
        received = []

        async def on_message(text):
            received.append(text)
            done.set()

        channel.objects["backend"].messageReceived.connect(on_message)
        host.emit("backend", MESSAGE_RECEIVED, "async")

        await asyncio.wait_for(done.wait(), timeout=1)
        assert received == ["async"]


class TestPropertyUpdateDispatch:
    """Tests for PropertyUpdate batches and the Idle acknowledgement."""

    def test_batch_updates_cache_and_sends_one_idle(self, host, channel):
        host.property_update({"object": "backend", "signals": {}, "properties": {"0": "v"}})

        assert channel.objects["backend"].title == "v"
        assert host.sent == [{"type": 4}]

    def test_multi_object_batch_sends_single_idle(self, host):
        channel = host.connect({"a": backend_descriptor(), "b": backend_descriptor()})

        host.property_update(
            {"object": "a", "signals": {}, "properties": {str(TITLE): "A"}},
            {"object": "b", "signals": {}, "properties": {str(COUNT): 9}},
        )

        assert channel.objects["a"].title == "A"
        assert channel.objects["b"].count == 9
        assert host.types == [4]

    def test_notify_signal_fires_with_supplied_args(self, host, channel):
        received = []
        channel.objects["backend"].titleChanged.connect(lambda *args: received.append(args))

        host.property_update(
            {"object": "backend", "signals": {str(TITLE_CHANGED): ["v"]}, "properties": {str(TITLE): "v"}}
        )

        assert received == [("v",)]

    def test_properties_written_before_signals_fire(self, host, channel):
        backend = channel.objects["backend"]
        seen = []
        backend.titleChanged.connect(lambda *args: seen.append(backend.title))

        host.property_update(
            {"object": "backend", "signals": {str(TITLE_CHANGED): []}, "properties": {str(TITLE): "new"}}
        )

        assert seen == ["new"]

    def test_unknown_object_skipped_but_idle_sent(self, host, channel, caplog):
        host.property_update({"object": "ghost", "signals": {}, "properties": {"0": 1}})

        assert host.types == [4]
        assert "Unhandled property update: ghost" in caplog.text

    def test_missing_data_list_still_idles(self, host, channel, caplog):
        host.deliver({"type": 2})
        assert host.types == [4]
        assert "Property update without a data list" in caplog.text

    def test_malformed_entries_skipped(self, host, channel, caplog):
        host.property_update(
            "junk",
            {"object": "backend", "signals": [1], "properties": {}},
            {"object": "backend", "signals": {}, "properties": {str(TITLE): "ok"}},
        )

        assert channel.objects["backend"].title == "ok"
        assert host.types == [4]
        assert "Malformed property update entry" in caplog.text

    def test_malformed_object_reference_not_registered(self, host, channel, caplog):
        broken = object_reference("x1", make_descriptor(methods=[["broken"]]))
        host.property_update({"object": "backend", "signals": {}, "properties": {str(FRIEND): broken}})

        assert sorted(channel.objects) == ["backend"]
        assert channel.objects["backend"].friend is None
        assert host.types == [4]
        assert "Cannot unwrap QObject x1 from malformed data" in caplog.text

    def test_undeclared_property_dropped(self, host, channel, caplog):
        backend = channel.objects["backend"]
        host.property_update({"object": "backend", "signals": {}, "properties": {"99": "junk", str(TITLE): "ok"}})

        assert set(backend._property_cache) == {TITLE, FRIEND, COUNT}
        assert backend.title == "ok"
        assert host.types == [4]
        assert "Dropping update of undeclared property 99 in object backend" in caplog.text

    def test_overrides_optimistic_local_value(self, host, channel):
        backend = channel.objects["backend"]
        backend.title = "local"

        host.property_update({"object": "backend", "signals": {}, "properties": {str(TITLE): "host"}})

        assert backend.title == "host"


class TestFaultyInbound:
    """Protocol violations are logged and dropped."""

    def test_invalid_json(self, host, channel, caplog):
        host.deliver("{broken")
        assert "Invalid message received" in caplog.text
        assert host.sent == []

    def test_unknown_type(self, host, channel, caplog):
        host.deliver({"type": 99})
        assert "Invalid message received" in caplog.text

    def test_client_only_type_from_host(self, host, channel, caplog):
        host.deliver({"type": 6, "object": "backend", "method": 1, "args": []})
        assert "Invalid message received" in caplog.text

    def test_debug_is_ignored(self, host, channel, caplog):
        host.deliver({"type": 5, "data": "note"})
        assert host.sent == []
        assert "Invalid message received" not in caplog.text

    def test_parsed_message_event(self, host, channel):
        """Transports may hand over already-parsed messages."""
        host.transport.onmessage(MessageEvent({"type": 2, "data": []}))
        assert host.types == [4]

    def test_raw_payload_without_event(self, host, channel):
        channel.handle_message('{"type": 2, "data": []}')
        assert host.types == [4]

    def test_channel_survives_faults(self, host, channel):
        host.deliver("garbage")
        host.deliver({"type": 1, "object": "ghost", "signal": 0})
        host.respond(999, None)

        host.property_update({"object": "backend", "signals": {}, "properties": {"0": "still works"}})
        assert channel.objects["backend"].title == "still works"


def test_in_process_transport_requires_channel():
    transport = InProcessTransport(lambda data: None)
    with pytest.raises(RuntimeError):
        transport.deliver("{}")


def test_fake_host_is_plain_transport():
    host = FakeHost()
    assert callable(host.transport.send)
