from pydantic import BaseModel
from typing import Literal, Tuple
import os


ENV_PREFIX = "DELIVERY_"


class ServiceConfig(BaseModel):
    # Pricing
    rate_per_mile: int = 3
    earth_radius_miles: float = 3958.8

    # ---- Directions ----
    directions_mode: Literal["google", "straight"] = "google"
    directions_base_url: str = "https://maps.googleapis.com/maps/api"
    directions_api_key: str = ""
    directions_timeout_sec: float = 5.0
    straight_route_points: int = 50  # only used by the offline provider

    # ---- Tracking cadence (ms per step) ----
    customer_track_interval_ms: int = 700   # ~20mph on the customer map
    driver_track_interval_ms: int = 1000

    # Drivers have no live GPS feed; everyone starts from the depot
    driver_home: Tuple[float, float] = (52.62952818500918, -1.1380281441788296)

    # ---- Accounts / orders ----
    default_pin: str = "0000"
    recent_orders_limit: int = 2

    # ---- Seeding ----
    stores_csv: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "stores.csv")

    @classmethod
    def from_env(cls, environ=None) -> "ServiceConfig":
        """
        Build a config from DELIVERY_* variables, e.g. DELIVERY_DIRECTIONS_API_KEY.
        Tuple fields take "lat,lng".
        """
        environ = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name == "driver_home":
                lat, lng = raw.split(",")
                overrides[name] = (float(lat), float(lng))
            else:
                overrides[name] = raw
        return cls(**overrides)
