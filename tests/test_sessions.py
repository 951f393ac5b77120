import pytest

from conftest import CUSTOMER, HOME, STORE, FakeDirections, forever, place_order, run
from delivery.errors import DecodeError, InvalidTransition, NoRoute, PinMismatch, RouteUnavailable
from delivery.models import GeoPoint
from delivery.sessions import CustomerTracker, DriverSession
from delivery.store import ORDERS
from delivery.tracking import TrackingContext


def _driver(lifecycle, directions, driver_id="drv-1"):
    return DriverSession(lifecycle, directions, driver_id, home=HOME, tracking=TrackingContext(sleep=forever))


def test_driver_walks_through_both_legs(lifecycle):
    directions = FakeDirections()

    async def scenario():
        order = await place_order(lifecycle)
        session = _driver(lifecycle, directions)
        accepted = await session.accept(order.order_id)
        first = session.tracking.current
        collected = await session.mark_collected()
        second = session.tracking.current
        done = await session.complete("4821")
        return accepted, first, collected, second, done, session

    accepted, first, collected, second, done, session = run(scenario())
    assert accepted.status == "collecting"
    assert collected.status == "en_route"
    assert done.status == "completed"

    assert directions.calls == [
        (HOME, STORE.location, "to_store"),
        (STORE.location, CUSTOMER, "to_customer"),
    ]
    assert first.cancelled and first.route.leg == "to_store"
    assert second.cancelled and second.route.leg == "to_customer"
    assert session.tracking.current is None
    assert session.order_id is None


def test_route_is_fetched_only_after_the_write(lifecycle, store):
    seen = []

    async def check_status(origin, destination, leg):
        doc = await store.get(ORDERS, seen_order[0])
        seen.append((leg, doc["status"]))

    seen_order = []
    directions = FakeDirections(on_fetch=check_status)

    async def scenario():
        order = await place_order(lifecycle)
        seen_order.append(order.order_id)
        session = _driver(lifecycle, directions)
        await session.accept(order.order_id)
        await session.mark_collected()
        session.close()

    run(scenario())
    assert seen == [("to_store", "collecting"), ("to_customer", "en_route")]


@pytest.mark.parametrize("error", [NoRoute("none"), RouteUnavailable("down"), DecodeError("bad")])
def test_route_failure_does_not_undo_transition(lifecycle, error):
    directions = FakeDirections(error=error)

    async def scenario():
        order = await place_order(lifecycle)
        session = _driver(lifecycle, directions)
        accepted = await session.accept(order.order_id)
        return accepted, session, await lifecycle.get(order.order_id)

    accepted, session, saved = run(scenario())
    assert accepted.status == saved.status == "collecting"
    assert session.route is None
    assert session.tracking.current is None


def test_failed_accept_fetches_no_route(lifecycle):
    directions = FakeDirections()

    async def scenario():
        order = await place_order(lifecycle)
        await lifecycle.accept(order.order_id, "drv-2")
        session = _driver(lifecycle, directions)
        with pytest.raises(InvalidTransition):
            await session.accept(order.order_id)
        return session

    session = run(scenario())
    assert directions.calls == []
    assert session.order_id is None


def test_wrong_pin_keeps_animation_running(lifecycle):
    async def scenario():
        order = await place_order(lifecycle)
        session = _driver(lifecycle, FakeDirections())
        await session.accept(order.order_id)
        await session.mark_collected()
        with pytest.raises(PinMismatch):
            await session.complete("1111")
        handle = session.tracking.current
        alive = handle is not None and not handle.done
        session.close()
        return alive

    assert run(scenario()) is True


def test_declined_orders_are_hidden(lifecycle):
    async def scenario():
        a = await place_order(lifecycle)
        b = await place_order(lifecycle)
        session = _driver(lifecycle, FakeDirections())
        session.decline(a.order_id)
        return b, await session.available_orders()

    b, orders = run(scenario())
    assert [o.order_id for o in orders] == [b.order_id]


def test_mark_collected_without_order(lifecycle):
    session = _driver(lifecycle, FakeDirections())
    with pytest.raises(RuntimeError):
        run(session.mark_collected())


def test_customer_tracks_store_to_door(lifecycle):
    directions = FakeDirections(points=[STORE.location, GeoPoint(52.63, -1.125), CUSTOMER])

    async def scenario():
        tracker = CustomerTracker(lifecycle, directions, "cust-1", tracking=TrackingContext(sleep=forever))
        nothing = await tracker.refresh()
        order = await place_order(lifecycle)
        still_nothing = await tracker.refresh()
        await lifecycle.accept(order.order_id, "drv-1")
        active = await tracker.refresh()
        handle = tracker.tracking.current
        tracker.close()
        return nothing, still_nothing, active, handle

    nothing, still_nothing, active, handle = run(scenario())
    assert nothing is None and still_nothing is None
    assert active.status == "collecting"
    assert directions.calls == [(STORE.location, CUSTOMER, "to_customer")]
    assert handle.step_interval_ms == 700
    assert handle.position == STORE.location
    assert handle.cancelled


def test_fresh_session_picks_up_order_by_id(lifecycle):
    directions = FakeDirections()

    async def scenario():
        order = await place_order(lifecycle)
        await _driver(lifecycle, directions).accept(order.order_id)
        resumed = _driver(lifecycle, directions)
        collected = await resumed.mark_collected(order.order_id)
        leg = resumed.route.leg
        done = await resumed.complete("4821", order.order_id)
        return collected, leg, done, resumed

    collected, leg, done, resumed = run(scenario())
    assert collected.status == "en_route"
    assert leg == "to_customer"
    assert done.status == "completed"
    assert resumed.order_id is None and resumed.route is None
