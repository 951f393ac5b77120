import asyncio
from datetime import datetime, timezone

from conftest import place_order, run
from delivery.notifications import LogNotificationSink, NewOrderWatcher, Notification, OrderStatusWatcher
from delivery.store import ORDERS


def test_new_orders_after_session_start_only(lifecycle, store, clock):
    async def scenario():
        await place_order(lifecycle, note="old")
        sink = LogNotificationSink()
        watcher = NewOrderWatcher(store, sink, session_start=clock.now)
        await watcher.drain()
        before = list(sink.sent)

        fresh = await place_order(lifecycle, note="fresh")
        await lifecycle.accept(fresh.order_id, "drv-1")
        await watcher.drain()
        await watcher.stop()
        return before, sink.sent

    before, sent = run(scenario())
    assert before == []
    assert sent == [Notification("New Order Available", "A delivery is waiting to be picked up.", "drivers")]


def test_each_order_is_announced_once(lifecycle, store, clock):
    async def scenario():
        sink = LogNotificationSink()
        watcher = NewOrderWatcher(store, sink, session_start=clock.now)
        await watcher.drain()
        order = await place_order(lifecycle)
        doc = await store.get(ORDERS, order.order_id)
        await watcher.drain()
        await store.put(ORDERS, order.order_id, doc)
        await watcher.drain()
        return sink.sent

    assert len(run(scenario())) == 1


def test_customer_hears_about_status_changes(lifecycle, store):
    async def scenario():
        order = await place_order(lifecycle, customer_id="cust-1")
        await place_order(lifecycle, customer_id="cust-2")
        sink = LogNotificationSink()
        watcher = OrderStatusWatcher(store, sink, "cust-1")
        await watcher.drain()
        replayed = list(sink.sent)

        await lifecycle.accept(order.order_id, "drv-1")
        await watcher.drain()
        await lifecycle.advance_to_en_route(order.order_id, "drv-1")
        await watcher.drain()
        await place_order(lifecycle, customer_id="cust-1")
        await watcher.drain()
        return replayed, [n.body for n in sink.sent], sink.sent

    replayed, bodies, sent = run(scenario())
    assert replayed == []
    assert bodies == [
        "Your order status changed to: Driver collecting goods",
        "Your order status changed to: Driver has collected goods and is on his way",
    ]
    assert all(n.title == "Order Update" and n.audience == "cust-1" for n in sent)


def test_replay_of_history_is_silent(lifecycle, store):
    async def scenario():
        done = await place_order(lifecycle)
        await lifecycle.accept(done.order_id, "drv-1")
        await lifecycle.advance_to_en_route(done.order_id, "drv-1")
        await lifecycle.verify_and_complete(done.order_id, "drv-1", "4821")
        live = await place_order(lifecycle)
        await lifecycle.accept(live.order_id, "drv-1")

        sink = LogNotificationSink()
        watcher = OrderStatusWatcher(store, sink, "cust-1")
        await watcher.drain()
        return sink.sent

    assert run(scenario()) == []


def test_running_watcher_task(lifecycle, store):
    async def scenario():
        sink = LogNotificationSink()
        watcher = NewOrderWatcher(store, sink, session_start=datetime(2000, 1, 1, tzinfo=timezone.utc)).start()
        await place_order(lifecycle)
        for _ in range(5):
            await asyncio.sleep(0)
        await watcher.stop()
        return sink.sent

    assert len(run(scenario())) == 1
