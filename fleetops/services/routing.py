from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

logger = logging.getLogger("fleetops.routing")

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return round(EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a)), 3)


@dataclass(frozen=True)
class Point:
    lat: float
    lng: float
    label: str | None = None


@dataclass(frozen=True)
class RouteResult:
    distance_km: float
    duration_min: int
    geometry: dict[str, Any]
    is_fallback: bool = False
    error: str | None = None
    coords: list[tuple[float, float]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "distance_km": self.distance_km,
            "duration_min": self.duration_min,
            "geojson": self.geometry,
            "coords": [list(pair) for pair in self.coords],
            "fallback": self.is_fallback,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class RoutingError(RuntimeError):
    pass


class RoutingClient:
    """Driving routes from an OSRM-compatible service, with a straight-line fallback."""

    def __init__(
        self,
        base_url: str = "https://router.project-osrm.org",
        timeout_seconds: float = 10,
        max_retries: int = 3,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json", "User-Agent": "fleetops/0.1"},
            follow_redirects=True,
        )
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def route(self, origin: Point, destination: Point) -> RouteResult:
        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin.lng:f},{origin.lat:f};{destination.lng:f},{destination.lat:f}"
        )
        params = {"overview": "full", "geometries": "geojson", "steps": "false"}

        last_error = ""
        for attempt in range(self.max_retries + 1):
            try:
                return self._fetch(url, params)
            except (httpx.HTTPError, RoutingError, ValueError) as exc:
                last_error = str(exc)
                if attempt < self.max_retries:
                    logger.info("routing attempt %s failed, retrying: %s", attempt + 1, last_error)
                    self._sleep(0.5 * (attempt + 1))

        logger.warning("routing failed after %s retries, using straight line: %s", self.max_retries, last_error)
        return self.fallback(origin, destination, last_error)

    def fallback(self, origin: Point, destination: Point, error: str = "") -> RouteResult:
        distance = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
        return RouteResult(
            distance_km=distance,
            duration_min=max(5, int(round(distance * 2.5))),
            geometry={
                "type": "LineString",
                "coordinates": [[origin.lng, origin.lat], [destination.lng, destination.lat]],
            },
            is_fallback=True,
            error=error or None,
            coords=[(origin.lat, origin.lng), (destination.lat, destination.lng)],
        )

    def _fetch(self, url: str, params: dict[str, str]) -> RouteResult:
        response = self.client.get(url, params=params)
        if response.status_code != 200:
            raise RoutingError(f"HTTP error {response.status_code}: {response.text[:200]}")
        body = response.json()
        if not isinstance(body, dict) or body.get("code") != "Ok" or not body.get("routes"):
            raise RoutingError(f"Invalid routing response: {response.text[:200]}")

        route = body["routes"][0]
        geometry = route.get("geometry") or {}
        coords = [(float(point[1]), float(point[0])) for point in geometry.get("coordinates") or []]
        return RouteResult(
            distance_km=round(float(route.get("distance") or 0) / 1000, 3),
            duration_min=int(round(float(route.get("duration") or 0) / 60)),
            geometry=geometry,
            coords=coords,
        )
