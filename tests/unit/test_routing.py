"""
Unit tests for the OpenRouteService client (over httpx.MockTransport),
the straight-line fallback and instruction formatting.
"""
import asyncio

import httpx
import pytest

from app.services.routing import (
    NoRoutablePointError,
    OrsClient,
    RouteInfo,
    RouteStep,
    RoutingApiError,
    fallback_route,
    format_instructions,
    resolve_route,
    resolve_routes,
)

ORS_ROUTE = {
    "type": "FeatureCollection",
    "features": [{
        "geometry": {"type": "LineString", "coordinates": [[36.8219, -1.2921], [36.8169, -1.3183]]},
        "properties": {
            "summary": {"distance": 3456.7, "duration": 412.3},
            "segments": [{
                "steps": [
                    {"distance": 1200.0, "duration": 150.0, "instruction": "Head south on Moi Avenue", "name": "Moi Avenue"},
                    {"distance": 2256.7, "duration": 262.3, "instruction": "Arrive at Westlands", "name": "-"},
                ],
            }],
        },
    }],
}


def make_client(handler) -> OrsClient:
    return OrsClient(api_key="test-key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestOrsClient:
    async def test_parses_route(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=ORS_ROUTE)

        client = make_client(handler)
        route = await client.get_route(-1.2921, 36.8219, -1.3183, 36.8169)
        await client.aclose()

        assert seen["path"] == "/v2/directions/driving-car"
        # lng,lat order on the wire
        assert seen["params"]["start"] == "36.8219,-1.2921"
        assert seen["params"]["api_key"] == "test-key"
        assert route.distance_m == pytest.approx(3456.7)
        assert route.duration_s == pytest.approx(412.3)
        assert [s.instruction for s in route.steps] == ["Head south on Moi Avenue", "Arrive at Westlands"]
        assert route.is_fallback is False

    async def test_unroutable_point(self):
        def handler(request):
            return httpx.Response(404, json={"error": {"code": 2010, "message": "Could not find routable point within a radius of 350.0 meters"}})

        client = make_client(handler)
        with pytest.raises(NoRoutablePointError):
            await client.get_route(-1.2921, 36.8219, -1.3183, 36.8169)
        await client.aclose()

    async def test_upstream_error(self):
        client = make_client(lambda request: httpx.Response(500, text="upstream exploded"))
        with pytest.raises(RoutingApiError):
            await client.get_route(-1.2921, 36.8219, -1.3183, 36.8169)
        await client.aclose()

    async def test_empty_features(self):
        client = make_client(lambda request: httpx.Response(200, json={"features": []}))
        with pytest.raises(RoutingApiError):
            await client.get_route(-1.2921, 36.8219, -1.3183, 36.8169)
        await client.aclose()

    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(RoutingApiError):
            await client.get_route(-1.2921, 36.8219, -1.3183, 36.8169)
        await client.aclose()

    async def test_invalid_coordinates_never_hit_the_wire(self):
        calls = []
        client = make_client(lambda request: calls.append(request) or httpx.Response(200, json=ORS_ROUTE))
        with pytest.raises(RoutingApiError):
            await client.get_route(123.0, 36.8219, -1.3183, 36.8169)
        await client.aclose()
        assert calls == []

    async def test_autocomplete(self):
        body = {"features": [{"properties": {"label": "Westlands, Nairobi"}, "geometry": {"coordinates": [36.8169, -1.3183]}}]}
        client = make_client(lambda request: httpx.Response(200, json=body))
        results = await client.autocomplete("Westl")
        await client.aclose()
        assert results == [{"label": "Westlands, Nairobi", "coordinates": [36.8169, -1.3183]}]

    async def test_reverse_geocode(self):
        body = {"features": [{"properties": {"name": "Sarit Centre", "street": "Karuna Road", "locality": "Nairobi"}}]}
        client = make_client(lambda request: httpx.Response(200, json=body))
        assert await client.reverse_geocode(-1.26, 36.80) == "Sarit Centre, Karuna Road, Nairobi"
        await client.aclose()

    async def test_reverse_geocode_failure_is_none(self):
        client = make_client(lambda request: httpx.Response(503))
        assert await client.reverse_geocode(-1.26, 36.80) is None
        await client.aclose()


class StubProvider:
    def __init__(self, error=None):
        self.error = error

    async def get_route(self, *coords):
        if self.error:
            raise self.error
        return RouteInfo(distance_m=1000, duration_s=120, steps=[])


@pytest.mark.asyncio
class TestResolveRoute:
    async def test_provider_route_passes_through(self):
        route = await resolve_route(StubProvider(), -1.2921, 36.8219, -1.3183, 36.8169)
        assert route.distance_m == 1000
        assert route.is_fallback is False

    async def test_unroutable_point_falls_back(self):
        provider = StubProvider(NoRoutablePointError("no road"))
        route = await resolve_route(provider, -1.2921, 36.8219, -1.3183, 36.8169)
        assert route.is_fallback is True
        assert 2900 <= route.distance_m <= 3100
        assert len(route.steps) == 1

    async def test_api_error_propagates(self):
        with pytest.raises(RoutingApiError):
            await resolve_route(StubProvider(RoutingApiError("down")), -1.2921, 36.8219, -1.3183, 36.8169)


class FlakyProvider:
    """Legs starting at latitude 0 fail at once, at 9 are unroutable, the rest answer slowly."""

    def __init__(self):
        self.finished = []

    async def get_route(self, start_lat, start_lng, end_lat, end_lng):
        if start_lat == 0:
            raise RoutingApiError("down")
        if start_lat == 9:
            raise NoRoutablePointError("no road")
        await asyncio.sleep(0.01)
        self.finished.append(start_lat)
        return RouteInfo(distance_m=1000, duration_s=120, steps=[])


@pytest.mark.asyncio
class TestResolveRoutes:
    async def test_results_keep_leg_order(self):
        routes = await resolve_routes(FlakyProvider(), [(1, 1, 1.01, 1), (9, 1, 9.01, 1)])
        assert [r.is_fallback for r in routes] == [False, True]

    async def test_failure_waits_for_sibling_legs(self):
        provider = FlakyProvider()
        with pytest.raises(RoutingApiError):
            await resolve_routes(provider, [(0, 0, 1, 1), (1, 1, 2, 2), (2, 2, 3, 3)])
        assert sorted(provider.finished) == [1, 2]

    async def test_no_legs(self):
        assert await resolve_routes(FlakyProvider(), []) == []


class TestFallbackAndFormatting:
    def test_fallback_uses_thirty_kph(self):
        route = fallback_route(0, 0, 0.2698, 0)   # ~30 km due north
        assert route.distance_m == pytest.approx(30000, rel=0.001)
        assert route.duration_s == pytest.approx(3600, abs=5)
        assert route.steps[0].instruction.startswith("Estimated route: 30.0 km")

    def test_format_instructions(self):
        steps = [
            RouteStep(distance_m=1200, duration_s=150, instruction="Head south on Moi Avenue"),
            RouteStep(distance_m=80, duration_s=20, instruction="Arrive"),
        ]
        assert format_instructions(steps) == [
            "1. Head south on Moi Avenue (1.2km, ~2min)",
            "2. Arrive (0.1km, ~0min)",
        ]

    def test_format_instructions_empty(self):
        assert format_instructions([]) == []
