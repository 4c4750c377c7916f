"""
Unit tests for candidate scoring and the progressive radius search.
"""
import pytest

from app.exceptions import NoDriversAvailableError
from app.services.matching import MatchingWeights, nearest_by_distance, rank_candidates, score_candidate
from app.services.routing import NoRoutablePointError, RoutingApiError

from conftest import NAIROBI_CBD, FakeRouteProvider, north_of


class TestScoreCandidate:
    def test_unrated_driver_gets_neutral_rating(self):
        # 0.4*95 + 0.3*80 + 0.2*100 + 0.1*100 = 92
        assert score_candidate(500, None, True, MatchingWeights()) == 92

    def test_rating_scaled_to_hundred(self):
        # 0.4*100 + 0.3*100 + 20 + 10
        assert score_candidate(0, 5.0, True, MatchingWeights()) == 100

    def test_distance_score_floors_at_zero(self):
        # 0 + 0.3*80 + 20 + 10
        assert score_candidate(15_000, None, True, MatchingWeights()) == 54

    def test_unavailable_loses_availability_points(self):
        assert score_candidate(0, 5.0, False, MatchingWeights()) == 80

    def test_closer_driver_scores_higher(self):
        w = MatchingWeights()
        assert score_candidate(300, None, True, w) > score_candidate(500, None, True, w) > score_candidate(1500, None, True, w)

    def test_custom_weights(self):
        w = MatchingWeights(distance=1.0, rating=0.0, availability=0.0, vehicle=0.0)
        assert score_candidate(2_000, 1.0, True, w) == 80


@pytest.mark.asyncio
class TestRankCandidates:
    async def test_ranked_by_score(self, db, factory, route_provider):
        far = await factory.driver(at=north_of(NAIROBI_CBD, 1.5))
        near = await factory.driver(at=north_of(NAIROBI_CBD, 0.3))
        mid = await factory.driver(at=north_of(NAIROBI_CBD, 0.5))

        ranked = await rank_candidates(db, route_provider, *NAIROBI_CBD)

        assert [c.driver.id for c in ranked] == [near.id, mid.id, far.id]
        assert ranked[0].score == 93
        assert len(route_provider.calls) == 3

    async def test_rating_can_outweigh_distance(self, db, factory, route_provider):
        await factory.driver(at=north_of(NAIROBI_CBD, 0.3), rating=2.0)
        star = await factory.driver(at=north_of(NAIROBI_CBD, 1.0), rating=5.0)

        ranked = await rank_candidates(db, route_provider, *NAIROBI_CBD)
        assert ranked[0].driver.id == star.id

    async def test_widens_radius_until_found(self, db, factory, route_provider):
        distant = await factory.driver(at=north_of(NAIROBI_CBD, 12))
        ranked = await rank_candidates(db, route_provider, *NAIROBI_CBD)
        assert [c.driver.id for c in ranked] == [distant.id]

    async def test_stops_at_first_radius_with_drivers(self, db, factory, route_provider):
        close = await factory.driver(at=north_of(NAIROBI_CBD, 3))
        await factory.driver(at=north_of(NAIROBI_CBD, 8))
        ranked = await rank_candidates(db, route_provider, *NAIROBI_CBD)
        assert [c.driver.id for c in ranked] == [close.id]

    async def test_nobody_within_last_radius(self, db, factory, route_provider):
        await factory.driver(at=north_of(NAIROBI_CBD, 30))
        await factory.driver(at=north_of(NAIROBI_CBD, 1), is_available=False)
        with pytest.raises(NoDriversAvailableError):
            await rank_candidates(db, route_provider, *NAIROBI_CBD)

    async def test_excludes_driver(self, db, factory, route_provider):
        skipped = await factory.driver(at=north_of(NAIROBI_CBD, 0.3))
        other = await factory.driver(at=north_of(NAIROBI_CBD, 0.6))
        ranked = await rank_candidates(db, route_provider, *NAIROBI_CBD, exclude_driver_id=skipped.id)
        assert [c.driver.id for c in ranked] == [other.id]

    async def test_unroutable_candidates_use_estimate(self, db, factory):
        await factory.driver(at=north_of(NAIROBI_CBD, 0.4))
        provider = FakeRouteProvider(error=NoRoutablePointError("no road"))
        ranked = await rank_candidates(db, provider, *NAIROBI_CBD)
        assert ranked[0].route.is_fallback is True
        assert ranked[0].route.distance_m == pytest.approx(400, rel=0.01)

    async def test_api_error_propagates(self, db, factory):
        await factory.driver(at=north_of(NAIROBI_CBD, 0.4))
        with pytest.raises(RoutingApiError):
            await rank_candidates(db, FakeRouteProvider(error=RoutingApiError("down")), *NAIROBI_CBD)


@pytest.mark.asyncio
class TestNearestByDistance:
    async def test_closest_within_five_km(self, db, factory):
        await factory.driver(at=north_of(NAIROBI_CBD, 2))
        closest = await factory.driver(at=north_of(NAIROBI_CBD, 0.7))
        found = await nearest_by_distance(db, *NAIROBI_CBD)
        assert found.item.driver_id == closest.id
        assert found.distance_km == pytest.approx(0.7, rel=0.01)

    async def test_none_beyond_radius(self, db, factory):
        await factory.driver(at=north_of(NAIROBI_CBD, 6))
        assert await nearest_by_distance(db, *NAIROBI_CBD) is None
