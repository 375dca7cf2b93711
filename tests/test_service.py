"""Orchestration tests over the fixture provider with injected upstream failures."""

import unittest
from datetime import timedelta

from bustime.config import DEFAULT_DESTINATION_ID, DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, Settings
from bustime.errors import UpstreamUnavailable, ValidationError
from bustime.providers.mock import MockProvider
from bustime.service import BusTimeService


class FlakyMonitoring(MockProvider):
    """Fixture provider whose stop monitoring fails for chosen stops."""

    def __init__(self, failing=(), **kwargs):
        super().__init__(**kwargs)
        self.failing = set(failing)

    async def get_stop_monitoring(self, stop_id, line_id=None):
        if stop_id in self.failing:
            raise UpstreamUnavailable(f"Bus Time request for arrivals at {stop_id} failed", upstream_status=503)
        return await super().get_stop_monitoring(stop_id, line_id)


def service_for(provider):
    return BusTimeService(provider, Settings(stop_batch_delay=0, trip_estimate_minutes=15))


class TestBusTimes(unittest.IsolatedAsyncioTestCase):
    async def test_destination_failure_falls_back_to_estimates(self):
        service = service_for(FlakyMonitoring(failing={DEFAULT_DESTINATION_ID}))

        data = await service.bus_times(DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, DEFAULT_DESTINATION_ID)

        self.assertFalse(data.has_error)
        buses = {b.vehicle_id: b for b in data.buses}
        # onward call still observed
        self.assertFalse(buses["MTA NYCT_7581"].is_estimated)
        # only the destination feed knew this one
        self.assertTrue(buses["MTA NYCT_7575"].is_estimated)
        self.assertEqual(
            buses["MTA NYCT_7575"].destination_arrival - buses["MTA NYCT_7575"].origin_arrival,
            timedelta(minutes=15),
        )

    async def test_origin_failure_fails_the_request(self):
        service = service_for(FlakyMonitoring(failing={DEFAULT_ORIGIN_ID}))

        with self.assertRaises(UpstreamUnavailable):
            await service.bus_times(DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, DEFAULT_DESTINATION_ID)

    async def test_same_stop_twice(self):
        service = service_for(MockProvider())

        with self.assertRaises(ValidationError):
            await service.bus_times(DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, DEFAULT_ORIGIN_ID)

    async def test_both_feeds_healthy(self):
        service = service_for(MockProvider())

        data = await service.bus_times(DEFAULT_LINE_ID, DEFAULT_ORIGIN_ID, DEFAULT_DESTINATION_ID)

        buses = {b.vehicle_id: b for b in data.buses}
        self.assertFalse(buses["MTA NYCT_7575"].is_estimated)
        self.assertNotIn("MTA NYCT_7602", buses)


if __name__ == "__main__":
    unittest.main()
