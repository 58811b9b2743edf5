import pytest

from deliverycast.realtime.adapter import RealtimeEventAdapter
from deliverycast.realtime.events import EVENT_NAMES
from deliverycast.realtime.transport import WebSocketTransport

from fakes import broadcast


NEW_BROADCAST_NAMES = [
    "delivery-broadcast",
    "new-delivery",
    "delivery-notification",
    "delivery-created",
    "broadcast-delivery",
    "test-delivery-broadcast",
]


@pytest.fixture
def adapter(state, transport):
    adapter = RealtimeEventAdapter(state)
    adapter.attach(transport)
    return adapter


@pytest.mark.parametrize("name", NEW_BROADCAST_NAMES)
def test_every_new_broadcast_spelling_adds(adapter, state, transport, name):
    transport.push(name, broadcast("D1"))
    assert "D1" in state


def test_same_broadcast_under_two_names_shows_once(adapter, state, transport):
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push("new-delivery", broadcast("D1"))
    assert len(state) == 1


def test_accepted_by_other_after_add(adapter, state, transport):
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push("delivery-accepted-by-other", {"deliveryId": "D1", "acceptedBy": "driver-2"})
    assert "D1" not in state


def test_accepted_by_other_before_add(adapter, state, transport, clock):
    transport.push("delivery-accepted-by-other", {"deliveryId": "D1"})
    transport.push("delivery-broadcast", broadcast("D1", createdAt=clock.now - 5000))
    assert "D1" not in state


@pytest.mark.parametrize("name", ["broadcast-expired", "broadcast-removed", "broadcast-closed"])
def test_removal_events(adapter, state, transport, name):
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push(name, {"deliveryId": "D1"})
    assert "D1" not in state


def test_removal_accepts_bare_id(adapter, state, transport):
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push("broadcast-expired", "D1")
    assert "D1" not in state


@pytest.mark.parametrize("status, removed", [
    ("assigned", True),
    ("completed", True),
    ("cancelled", True),
    ("ASSIGNED", True),
    ("picked_up", False),
    ("broadcasting", False),
])
def test_status_change(adapter, state, transport, status, removed):
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push("delivery-status-changed", {"deliveryId": "D1", "status": status})
    assert ("D1" not in state) is removed


def test_removal_reason_reaches_listeners(adapter, state, transport):
    reasons = []
    state.subscribe(lambda kind, b, reason: reasons.append(reason))
    transport.push("delivery-broadcast", broadcast("D1"))
    transport.push("delivery-broadcast", broadcast("D2"))
    transport.push("delivery-accepted-by-other", {"deliveryId": "D1"})
    transport.push("broadcast-expired", {"deliveryId": "D2"})
    assert reasons == [None, None, "accepted_by_other", "expired"]


def test_nested_payload_is_unwrapped(adapter, state, transport):
    transport.push("delivery-notification", {"type": "broadcast", "delivery": broadcast("D1")})
    transport.push("new-delivery", {"data": broadcast("D2")})
    assert sorted(b.delivery_id for b in state.broadcasts) == ["D1", "D2"]


@pytest.mark.parametrize("payload", [None, 42, "", [], {"fee": 10}, {"delivery": "nope"}])
def test_malformed_payloads_are_dropped(adapter, state, transport, payload):
    transport.push("delivery-broadcast", payload)
    transport.push("broadcast-expired", payload)
    transport.push("delivery-status-changed", payload)
    assert len(state) == 0


def test_unknown_event_is_ignored(adapter, state):
    adapter.handle("something-else", broadcast("D1"))
    assert len(state) == 0


def test_attach_and_detach(state, transport):
    adapter = RealtimeEventAdapter(state)
    subs = adapter.attach(transport)
    assert len(subs) == len(EVENT_NAMES)
    assert transport.listener_count() == len(EVENT_NAMES)

    adapter.attach(transport)
    assert transport.listener_count() == len(EVENT_NAMES)

    adapter.detach()
    assert not adapter.attached
    assert transport.listener_count() == 0
    transport.push("delivery-broadcast", broadcast("D1"))
    assert len(state) == 0


def test_driver_gate_vetoes_new_broadcasts(state, transport):
    active = {"value": False}
    adapter = RealtimeEventAdapter(state, should_show=lambda: active["value"])
    adapter.attach(transport)

    transport.push("delivery-broadcast", broadcast("D1"))
    assert len(state) == 0

    active["value"] = True
    transport.push("delivery-broadcast", broadcast("D1"))
    assert "D1" in state


def test_driver_status_forwarded(state, transport):
    seen = []
    adapter = RealtimeEventAdapter(state, on_driver_status=seen.append)
    adapter.attach(transport)
    transport.push("driver-status-updated", {"isActive": False})
    transport.push("driver-status-updated", "garbage")
    assert seen == [{"isActive": False}]


# ==========================================
# Websocket frames
# ==========================================

def test_websocket_frames_dispatch_by_event_name(state):
    ws = WebSocketTransport(url="ws://localhost:9/ws/drivers", token="abc")
    RealtimeEventAdapter(state).attach(ws)

    ws._handle_frame('{"event": "delivery-broadcast", "data": {"deliveryId": "D1"}}')
    ws._handle_frame("not json")
    ws._handle_frame('{"data": {"deliveryId": "D2"}}')

    assert [b.delivery_id for b in state.broadcasts] == ["D1"]


def test_websocket_endpoint_carries_token():
    assert WebSocketTransport(url="ws://h/ws", token="t k")._endpoint() == "ws://h/ws?token=t+k"
    assert WebSocketTransport(url="ws://h/ws?v=1", token="t")._endpoint() == "ws://h/ws?v=1&token=t"
    assert WebSocketTransport(url="ws://h/ws")._endpoint() == "ws://h/ws"
