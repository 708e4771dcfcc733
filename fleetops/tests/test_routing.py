from __future__ import annotations

import unittest

import httpx

from fleetops.services import Point, RoutingClient, haversine_km
from fleetops.tests.support import routing_client

ORIGIN = Point(-18.9, 47.52, "Market")
DESTINATION = Point(-18.88, 47.53, "Office")


class HaversineTests(unittest.TestCase):
    def test_known_distance(self) -> None:
        self.assertEqual(haversine_km(0.0, 0.0, 0.0, 0.0), 0.0)
        self.assertAlmostEqual(haversine_km(0.0, 0.0, 0.0, 1.0), 111.195, places=2)


class RoutingClientTests(unittest.TestCase):
    def test_successful_route(self) -> None:
        client, seen = routing_client()

        result = client.route(ORIGIN, DESTINATION)

        self.assertFalse(result.is_fallback)
        self.assertEqual(result.distance_km, 12.345)
        self.assertEqual(result.duration_min, 15)
        self.assertEqual(result.coords[0], (-18.91, 47.52))
        self.assertEqual(seen[0].url.params["geometries"], "geojson")
        self.assertEqual(seen[0].url.params["overview"], "full")
        self.assertEqual(result.to_dict()["geojson"]["type"], "LineString")
        client.close()

    def test_retries_then_falls_back(self) -> None:
        client, seen = routing_client(status_code=503)

        result = client.route(ORIGIN, DESTINATION)

        self.assertEqual(len(seen), 4)
        self.assertTrue(result.is_fallback)
        self.assertIn("503", result.error)
        self.assertEqual(result.distance_km, haversine_km(-18.9, 47.52, -18.88, 47.53))
        self.assertEqual(result.duration_min, 6)
        self.assertEqual(result.geometry["coordinates"], [[47.52, -18.9], [47.53, -18.88]])
        self.assertTrue(result.to_dict()["fallback"])

    def test_unusable_body_falls_back(self) -> None:
        client, _ = routing_client(body={"code": "NoRoute", "routes": []})

        self.assertTrue(client.route(ORIGIN, DESTINATION).is_fallback)

    def test_transport_errors_are_retried(self) -> None:
        calls: list[int] = []
        delays: list[float] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 2000, "duration": 120}]})

        client = RoutingClient(
            "https://osrm.test/",
            max_retries=3,
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
            sleep=delays.append,
        )

        result = client.route(ORIGIN, DESTINATION)

        self.assertFalse(result.is_fallback)
        self.assertEqual(result.distance_km, 2.0)
        self.assertEqual(result.duration_min, 2)
        self.assertEqual(delays, [0.5, 1.0])

    def test_short_fallback_has_minimum_duration(self) -> None:
        client = RoutingClient("https://osrm.test", http_client=httpx.Client())

        result = client.fallback(ORIGIN, ORIGIN)

        self.assertEqual(result.distance_km, 0.0)
        self.assertEqual(result.duration_min, 5)
        client.client.close()


if __name__ == "__main__":
    unittest.main()
