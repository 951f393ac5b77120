import math
from typing import Tuple

from .models import GeoPoint


EARTH_RADIUS_MILES = 3958.8
RATE_PER_MILE = 3


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float, radius: float = EARTH_RADIUS_MILES) -> float:
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)

    x = math.sin(dphi / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dl / 2) ** 2
    return radius * 2 * math.atan2(math.sqrt(x), math.sqrt(1 - x))


def delivery_price(miles: float, rate: int = RATE_PER_MILE) -> int:
    # round() is banker's rounding; prices round half up
    return max(0, int(math.floor(miles * rate + 0.5)))


def quote(a: GeoPoint, b: GeoPoint, rate: int = RATE_PER_MILE, radius: float = EARTH_RADIUS_MILES) -> Tuple[float, int]:
    miles = distance_miles(a.lat, a.lng, b.lat, b.lng, radius=radius)
    return miles, delivery_price(miles, rate)
