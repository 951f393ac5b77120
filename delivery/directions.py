from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode
from urllib.request import urlopen

from .config import ServiceConfig
from .errors import NoRoute, RouteUnavailable
from .models import GeoPoint, Leg, Route
from .polyline import decode

logger = logging.getLogger(__name__)


Transport = Callable[[str, float], Awaitable[Dict[str, Any]]]


async def urllib_transport(url: str, timeout: float) -> Dict[str, Any]:
    def _get() -> Dict[str, Any]:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))

    return await asyncio.to_thread(_get)


def _latlng(p: GeoPoint) -> str:
    return f"{p.lat},{p.lng}"


class DirectionsProvider:
    async def fetch_route(self, origin: GeoPoint, destination: GeoPoint, leg: Optional[Leg] = None) -> Route:
        raise NotImplementedError


class GoogleDirections(DirectionsProvider):
    """
    Directions over HTTP. The path is the concatenation of every step polyline
    of the first leg of the first route. Boundary points shared by consecutive
    steps are kept twice, so the animation dwells one extra tick on each turn.
    """

    def __init__(self, cfg: ServiceConfig, transport: Optional[Transport] = None):
        self.cfg = cfg
        self.transport = transport or urllib_transport

    def url(self, origin: GeoPoint, destination: GeoPoint) -> str:
        qs = urlencode(
            {"origin": _latlng(origin), "destination": _latlng(destination), "key": self.cfg.directions_api_key},
            safe=",",
        )
        return f"{self.cfg.directions_base_url}/directions/json?{qs}"

    async def fetch_route(self, origin: GeoPoint, destination: GeoPoint, leg: Optional[Leg] = None) -> Route:
        url = self.url(origin, destination)
        try:
            payload = await self.transport(url, self.cfg.directions_timeout_sec)
        except Exception as e:
            logger.warning(f"Directions request failed: {e}")
            raise RouteUnavailable(f"directions provider unreachable: {e}") from e

        points = self._points(payload)
        logger.debug(f"Route {_latlng(origin)} -> {_latlng(destination)}: {len(points)} points")
        return Route(origin=origin, destination=destination, points=points, leg=leg)

    @staticmethod
    def _points(payload: Dict[str, Any]) -> List[GeoPoint]:
        routes = payload.get("routes") if isinstance(payload, dict) else None
        if routes is None:
            raise RouteUnavailable("directions response has no routes field")
        if not routes:
            raise NoRoute("no route found")

        try:
            steps = routes[0]["legs"][0]["steps"]
            encoded = [step["polyline"]["points"] for step in steps]
        except (KeyError, IndexError, TypeError) as e:
            raise RouteUnavailable(f"malformed directions response: {e}") from e

        points: List[GeoPoint] = []
        for s in encoded:
            points.extend(decode(s))
        return points


class StraightLineDirections(DirectionsProvider):
    """Offline provider: evenly spaced points on the straight segment."""

    def __init__(self, cfg: ServiceConfig):
        self.cfg = cfg

    async def fetch_route(self, origin: GeoPoint, destination: GeoPoint, leg: Optional[Leg] = None) -> Route:
        n = max(1, self.cfg.straight_route_points)
        points = []
        for i in range(n + 1):
            ratio = i / n
            points.append(
                GeoPoint(
                    origin.lat + (destination.lat - origin.lat) * ratio,
                    origin.lng + (destination.lng - origin.lng) * ratio,
                )
            )
        return Route(origin=origin, destination=destination, points=points, leg=leg)


def make_directions(cfg: ServiceConfig, transport: Optional[Transport] = None) -> DirectionsProvider:
    if cfg.directions_mode == "straight":
        return StraightLineDirections(cfg)
    return GoogleDirections(cfg, transport=transport)
