"""
Broadcast state container:
1. Dedup and idempotent removal
2. Expiry sweep boundaries
3. Ordering guard (tombstones) and accepted set
4. Default filling of partial payloads
5. Snapshot fetch: throttle, dedup, merge, failure handling
"""

import asyncio

import pytest

from deliverycast.broadcast.state import ADDED, REMOVED
from deliverycast.client.errors import NetworkError

from fakes import T0, broadcast, run


# ==========================================
# Add / remove
# ==========================================

def test_repeated_add_keeps_single_entry(state):
    for _ in range(5):
        state.add_broadcast(broadcast("D1"))
    assert len(state) == 1
    assert [b.delivery_id for b in state.broadcasts] == ["D1"]


def test_second_add_returns_none(state):
    assert state.add_broadcast(broadcast("D1")) is not None
    assert state.add_broadcast(broadcast("D1", fee=999)) is None
    assert state.get("D1").fee == 100


def test_remove_absent_id_is_noop(state):
    state.add_broadcast(broadcast("D1"))
    assert state.remove_broadcast("nope") is None
    assert [b.delivery_id for b in state.broadcasts] == ["D1"]


def test_remove_twice_is_noop(state):
    events = []
    state.subscribe(lambda kind, b, reason: events.append((kind, b.delivery_id, reason)))
    state.add_broadcast(broadcast("D1"))
    state.remove_broadcast("D1", reason="closed")
    state.remove_broadcast("D1", reason="closed")
    assert events == [(ADDED, "D1", None), (REMOVED, "D1", "closed")]


def test_add_without_delivery_id_is_ignored(state):
    assert state.add_broadcast({"fee": 10}) is None
    assert state.add_broadcast(None) is None
    assert len(state) == 0


def test_already_ended_broadcast_is_not_shown(state, clock):
    assert state.add_broadcast(broadcast("D1", broadcastEndTime=clock.now - 1)) is None
    assert "D1" not in state


# ==========================================
# Expiry sweep
# ==========================================

def test_sweep_removes_ended_broadcast(state, clock):
    state.add_broadcast(broadcast("D1", seconds=1))
    clock.advance(2000)
    removed = state.sweep_expired(clock.now)
    assert [b.delivery_id for b in removed] == ["D1"]
    assert "D1" not in state


def test_sweep_keeps_running_broadcast(state, clock):
    state.add_broadcast(broadcast("D1", broadcastEndTime=clock.now + 1000))
    assert state.sweep_expired(clock.now) == []
    assert "D1" in state


def test_sweep_removes_at_exact_end(state, clock):
    state.add_broadcast(broadcast("D1", broadcastEndTime=clock.now + 1000))
    assert len(state.sweep_expired(clock.now + 1000)) == 1


# ==========================================
# Ordering guard
# ==========================================

def test_stale_add_after_remove_stays_removed(state, clock):
    stale = broadcast("D1", createdAt=clock.now - 5000)
    state.remove_broadcast("D1", reason="accepted_by_other")
    assert state.add_broadcast(stale) is None
    assert "D1" not in state


def test_same_lifecycle_readd_is_blocked(state, clock):
    payload = broadcast("D1")
    state.add_broadcast(payload)
    state.remove_broadcast("D1")
    clock.advance(500)
    assert state.add_broadcast(payload) is None


def test_unstamped_readd_is_blocked(state):
    state.remove_broadcast("D1")
    assert state.add_broadcast({"deliveryId": "D1"}) is None


def test_fresh_lifecycle_is_readmitted(state, clock):
    state.add_broadcast(broadcast("D1"))
    state.remove_broadcast("D1", reason="expired")
    clock.advance(120_000)
    fresh = broadcast("D1", now_ms=clock.now)
    assert state.add_broadcast(fresh) is not None
    assert "D1" in state


def test_accepted_delivery_never_readmitted(state, clock):
    state.add_broadcast(broadcast("D1"))
    state.mark_accepted("D1")
    clock.advance(120_000)
    assert state.add_broadcast(broadcast("D1", now_ms=clock.now)) is None
    assert "D1" in state.accepted_deliveries


# ==========================================
# Default filling
# ==========================================

def test_bare_payload_gets_defaults(state, clock):
    b = state.add_broadcast({"deliveryId": "x"})
    assert b.broadcast_duration == 60
    assert b.broadcast_end_time == clock.now + 60_000
    assert b.pickup_location == "Unknown"
    assert b.delivery_location == "Unknown"
    assert b.customer_name == "Unknown"
    assert b.customer_phone == "N/A"
    assert b.delivery_code == "N/A"
    assert b.priority == "normal"
    assert b.fee == 0
    assert b.created_at == clock.now


def test_garbage_fields_fall_back(state, clock):
    b = state.add_broadcast({
        "deliveryId": 42,
        "fee": "lots",
        "priority": "mega",
        "broadcastDuration": -5,
        "broadcastEndTime": "soon",
        "pickupLocation": None,
        "distance": {"km": 3},
    })
    assert b.delivery_id == "42"
    assert b.fee == 0
    assert b.priority == "normal"
    assert b.broadcast_duration == 60
    assert b.broadcast_end_time == clock.now + 60_000
    assert b.pickup_location == "Unknown"
    assert b.distance == "Unknown"


def test_iso_end_time_and_driver_earning_default(state):
    b = state.add_broadcast({
        "deliveryId": "D1",
        "fee": 250,
        "broadcastEndTime": "2023-11-14T22:14:20.000Z",
    })
    assert b.broadcast_end_time == T0 + 60_000
    assert b.driver_earning == 250


def test_structured_address_is_kept(state):
    address = {"street": "1 College Rd", "city": "Famagusta"}
    b = state.add_broadcast(broadcast("D1", pickupLocation=address))
    assert b.pickup_location == address


# ==========================================
# Snapshot fetch
# ==========================================

LOCATION = {"lat": 35.1255, "lng": 33.3095}


def test_snapshot_fills_state(state, api, clock):
    api.broadcasts = [broadcast("D1", fee=100)]
    result = run(state.fetch_snapshot(LOCATION))
    assert [b.delivery_id for b in result] == ["D1"]
    assert state.get("D1").remaining_s(clock.now) == 60


def test_snapshot_without_location_is_noop(state, api):
    assert run(state.fetch_snapshot(None)) is None
    assert run(state.fetch_snapshot({"lat": 1})) is None
    assert api.fetch_calls == 0


def test_snapshot_throttled_unless_forced(state, api, clock):
    run(state.fetch_snapshot(LOCATION))
    clock.advance(10_000)
    assert run(state.fetch_snapshot(LOCATION)) is None
    assert api.fetch_calls == 1

    run(state.fetch_snapshot(LOCATION, force=True))
    assert api.fetch_calls == 2

    clock.advance(31_000)
    run(state.fetch_snapshot(LOCATION))
    assert api.fetch_calls == 3


def test_concurrent_snapshots_share_one_request(state, api):
    api.broadcasts = [broadcast("D1")]

    async def scenario():
        api.fetch_gate = asyncio.Event()
        first = asyncio.create_task(state.fetch_snapshot(LOCATION, force=True))
        second = asyncio.create_task(state.fetch_snapshot(LOCATION, force=True))
        await asyncio.sleep(0)
        api.fetch_gate.set()
        return await first, await second

    first, second = run(scenario())
    assert api.fetch_calls == 1
    assert [b.delivery_id for b in first] == [b.delivery_id for b in second] == ["D1"]


def test_snapshot_failure_keeps_state(state, api):
    state.add_broadcast(broadcast("D1"))
    api.fetch_error = NetworkError("Network error")
    with pytest.raises(NetworkError):
        run(state.fetch_snapshot(LOCATION, force=True))
    assert "D1" in state
    assert state.last_fetch_ms is None
    assert state.loading is False


def test_snapshot_keeps_realtime_adds_made_during_request(state, api):
    api.broadcasts = [broadcast("D1")]

    async def scenario():
        api.fetch_gate = asyncio.Event()
        fetch = asyncio.create_task(state.fetch_snapshot(LOCATION, force=True))
        await asyncio.sleep(0)
        state.add_broadcast(broadcast("D2"))
        api.fetch_gate.set()
        await fetch

    run(scenario())
    assert sorted(b.delivery_id for b in state.broadcasts) == ["D1", "D2"]


def test_snapshot_prunes_entries_the_server_closed(state, api):
    state.add_broadcast(broadcast("D0"))
    api.broadcasts = [broadcast("D1")]
    run(state.fetch_snapshot(LOCATION, force=True))
    assert [b.delivery_id for b in state.broadcasts] == ["D1"]


def test_inflight_snapshot_cannot_resurrect_removed_broadcast(state, api, clock):
    api.broadcasts = [broadcast("D2", createdAt=clock.now - 5000)]

    async def scenario():
        api.fetch_gate = asyncio.Event()
        fetch = asyncio.create_task(state.fetch_snapshot(LOCATION, force=True))
        await asyncio.sleep(0)
        state.add_broadcast(broadcast("D2", createdAt=clock.now - 5000))
        state.remove_broadcast("D2", reason="accepted_by_other")
        api.fetch_gate.set()
        await fetch

    run(scenario())
    assert "D2" not in state


def test_unlisted_broadcast_returns_when_relisted(state, api, clock):
    listed = broadcast("D1", broadcastStartTime=clock.now)
    state.add_broadcast(listed)

    api.broadcasts = []
    run(state.fetch_snapshot(LOCATION, force=True))
    assert "D1" not in state

    clock.advance(5_000)
    api.broadcasts = [listed]
    run(state.fetch_snapshot(LOCATION, force=True))
    assert "D1" in state


def test_unusable_timestamp_does_not_abort_snapshot(state, api):
    state.add_broadcast(broadcast("D0"))
    api.broadcasts = [broadcast("D1", createdAt="²"), broadcast("D2")]

    run(state.fetch_snapshot(LOCATION, force=True))

    assert sorted(b.delivery_id for b in state.broadcasts) == ["D1", "D2"]
    assert state.get("D1").created_at == state.clock.now_ms()


def test_explicit_zero_driver_earning_is_kept(state):
    b = state.add_broadcast(broadcast("D1", fee=250, driverEarning=0))
    assert b.driver_earning == 0
