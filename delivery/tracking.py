"""
Simulated vehicle position along a route.

An animation places the vehicle on the first point of the route and then,
once per interval, moves it one point further and reports the new position.
It stops by itself on the last point. A route of N points yields N - 1 ticks.

Everything runs as a task on the caller's event loop. Cancelling is
synchronous: once cancel() returns, no further tick is reported, even if the
sleep for the next one has already elapsed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .models import GeoPoint, Route

logger = logging.getLogger(__name__)


TickCallback = Callable[[int, GeoPoint], None]
Sleep = Callable[[float], Awaitable[None]]


class AnimationHandle:
    def __init__(self, route: Route, step_interval_ms: int, on_tick: Optional[TickCallback] = None, sleep: Sleep = asyncio.sleep):
        self.route = route
        self.step_interval_ms = max(1, int(step_interval_ms))
        self.on_tick = on_tick
        self._sleep = sleep

        self.index: int = 0
        self.cancelled: bool = False
        self._finished: bool = route.empty
        self._task: Optional[asyncio.Task] = None
        self._updates: asyncio.Queue = asyncio.Queue()

        if self._finished:
            self._updates.put_nowait(None)

    @property
    def position(self) -> Optional[GeoPoint]:
        if self.route.empty:
            return None
        return self.route.points[self.index]

    @property
    def done(self) -> bool:
        return self._finished or self.cancelled

    def start(self) -> "AnimationHandle":
        if self._task is None and not self.done:
            self._task = asyncio.create_task(self._loop())
        return self

    async def _loop(self):
        last = len(self.route.points) - 1
        try:
            while self.index < last:
                await self._sleep(self.step_interval_ms / 1000.0)
                if self.cancelled:
                    return
                self.index += 1
                pos = self.route.points[self.index]
                logger.debug(f"Tick {self.index}/{last} -> {pos.lat:.5f},{pos.lng:.5f}")
                self._updates.put_nowait(pos)
                if self.on_tick is not None:
                    self.on_tick(self.index, pos)
                if self.cancelled:
                    return
        except Exception:
            logger.exception(f"Animation stopped at tick {self.index}/{last}")
            raise
        finally:
            # consumers waiting on the stream must always see its end
            if not self.cancelled:
                self._finished = True
                self._updates.put_nowait(None)

    def cancel(self) -> None:
        if self.cancelled or self._finished:
            return
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._updates.put_nowait(None)

    async def wait(self) -> None:
        """Wait until the route is exhausted or the animation is cancelled."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self.cancelled:
                raise

    def __aiter__(self):
        return self

    async def __anext__(self) -> GeoPoint:
        # positions queued before cancel() are dropped
        if self.cancelled:
            raise StopAsyncIteration
        pos = await self._updates.get()
        if pos is None or self.cancelled:
            self._updates.put_nowait(None)
            raise StopAsyncIteration
        return pos

    async def positions(self) -> List[GeoPoint]:
        return [p async for p in self]


def start_animation(route: Route, step_interval_ms: int, on_tick: Optional[TickCallback] = None, sleep: Sleep = asyncio.sleep) -> AnimationHandle:
    return AnimationHandle(route, step_interval_ms, on_tick=on_tick, sleep=sleep).start()


def cancel_animation(handle: Optional[AnimationHandle]) -> None:
    if handle is not None:
        handle.cancel()


class TrackingContext:
    """Owns at most one running animation, e.g. one map view."""

    def __init__(self, sleep: Sleep = asyncio.sleep):
        self._sleep = sleep
        self.current: Optional[AnimationHandle] = None

    @property
    def position(self) -> Optional[GeoPoint]:
        return self.current.position if self.current else None

    def start(self, route: Route, step_interval_ms: int, on_tick: Optional[TickCallback] = None) -> AnimationHandle:
        cancel_animation(self.current)
        self.current = start_animation(route, step_interval_ms, on_tick=on_tick, sleep=self._sleep)
        logger.info(f"Animating {route.leg or 'route'} over {len(route)} points every {step_interval_ms}ms")
        return self.current

    def close(self) -> None:
        cancel_animation(self.current)
        self.current = None
