"""Tests for stop/direction reconciliation."""

import asyncio
import unittest
from unittest.mock import AsyncMock, call, patch

from bustime.errors import NotFound, UpstreamDataShapeError
from bustime.reconcile import (
    StopLookup,
    code_from_id,
    fetch_missing_stops,
    parse_direction_group,
    reconcile_stops,
    stop_groups_from_payload,
    stop_references,
)


def _stop(stop_id, name, lat=40.68, lon=-73.95):
    return {"id": stop_id, "code": stop_id.split("_")[1], "name": name, "lat": lat, "lon": lon}


GROUPS = [
    {"id": {"id": "1"}, "name": {"name": "RIDGEWOOD"}, "stopIds": ["MTA_4", "MTA_5", "MTA_6"]},
    {"id": "0", "name": {"name": "DOWNTOWN BROOKLYN"}, "stopIds": ["MTA_1", "MTA_2", "MTA_3"]},
]
REFERENCES = {f"MTA_{i}": _stop(f"MTA_{i}", f"STOP {i}") for i in range(1, 7)}


class FakeFetcher:
    """Stand-in for provider.get_stop, recording calls."""

    def __init__(self, records, fail=(), hang=()):
        self.records = records
        self.fail = set(fail)
        self.hang = set(hang)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, stop_id):
        self.calls.append(stop_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if stop_id in self.hang:
                await asyncio.sleep(10)
            if stop_id in self.fail:
                raise NotFound(f"stop {stop_id} not found")
            return self.records.get(stop_id)
        finally:
            self.in_flight -= 1


class TestDirectionGroups(unittest.TestCase):
    def test_name_and_id_shapes(self):
        group = parse_direction_group({"id": {"id": "7"}, "name": {"name": "X"}, "stopIds": ["a"]}, 0)
        self.assertEqual((group.id, group.name, group.stop_ids), ("7", "X", ["a"]))

        group = parse_direction_group({"id": "3", "name": "Y", "stopIds": "b"}, 0)
        self.assertEqual((group.id, group.name, group.stop_ids), ("3", "Y", ["b"]))

        group = parse_direction_group({"name": {"names": ["Z", "ZZ"]}, "stopIds": ["c"]}, 4)
        self.assertEqual((group.id, group.name), ("4", "Z"))

    def test_invalid_groups_are_skipped(self):
        self.assertIsNone(parse_direction_group({"id": "1", "name": {"name": ""}, "stopIds": ["a"]}, 0))
        self.assertIsNone(parse_direction_group({"id": "1", "name": "X", "stopIds": []}, 0))
        self.assertIsNone(parse_direction_group({"id": "1", "stopIds": ["a"]}, 0))

    def test_groups_from_payload(self):
        payload = {"entry": {"stopGroupings": [{"stopGroups": GROUPS}, {"type": "empty"}]}}
        self.assertEqual(len(stop_groups_from_payload(payload)), 2)

    def test_missing_groupings_is_a_shape_error(self):
        with self.assertRaises(UpstreamDataShapeError):
            stop_groups_from_payload({"entry": {}})
        with self.assertRaises(UpstreamDataShapeError):
            stop_groups_from_payload({})

    def test_references_from_entry_or_data(self):
        stops = [_stop("MTA_1", "A")]
        self.assertIn("MTA_1", stop_references({"entry": {"references": {"stops": stops}}}))
        self.assertIn("MTA_1", stop_references({"entry": {}, "references": {"stops": stops}}))
        self.assertEqual(stop_references({"entry": {}}), {})

    def test_code_from_id(self):
        self.assertEqual(code_from_id("MTA_304213"), "304213")
        self.assertEqual(code_from_id("MTA_X"), "")


class TestReconcileStops(unittest.IsolatedAsyncioTestCase):
    async def test_all_stops_referenced(self):
        fetcher = FakeFetcher({})
        result = await reconcile_stops(GROUPS, REFERENCES, fetcher)

        self.assertEqual(len(result.stops), 6)
        self.assertEqual(fetcher.calls, [])
        self.assertEqual([d.name for d in result.directions], ["RIDGEWOOD", "DOWNTOWN BROOKLYN"])
        self.assertEqual(
            [(s.direction, s.sequence, s.id) for s in result.stops],
            [
                ("DOWNTOWN BROOKLYN", 0, "MTA_1"),
                ("DOWNTOWN BROOKLYN", 1, "MTA_2"),
                ("DOWNTOWN BROOKLYN", 2, "MTA_3"),
                ("RIDGEWOOD", 0, "MTA_4"),
                ("RIDGEWOOD", 1, "MTA_5"),
                ("RIDGEWOOD", 2, "MTA_6"),
            ],
        )

    async def test_missing_references_are_fetched(self):
        fetcher = FakeFetcher(REFERENCES)
        result = await reconcile_stops(GROUPS, {}, fetcher, batch_delay=0)

        self.assertEqual(len(result.stops), 6)
        self.assertEqual(sorted(fetcher.calls), sorted(REFERENCES))
        self.assertEqual(result.unresolved, [])

    async def test_one_unresolved_stop_gives_partial_result(self):
        fetcher = FakeFetcher(REFERENCES, fail={"MTA_5"})
        result = await reconcile_stops(GROUPS, {}, fetcher, batch_delay=0)

        self.assertEqual(len(result.stops), 5)
        self.assertNotIn("MTA_5", [s.id for s in result.stops])
        self.assertEqual(result.unresolved, ["MTA_5"])

    async def test_fetch_returning_nothing_is_unresolved(self):
        records = dict(REFERENCES)
        del records["MTA_2"]
        result = await reconcile_stops(GROUPS, {}, FakeFetcher(records), batch_delay=0)
        self.assertEqual(result.unresolved, ["MTA_2"])
        self.assertEqual(len(result.stops), 5)

    async def test_slow_fetch_times_out_as_unresolved(self):
        fetcher = FakeFetcher(REFERENCES, hang={"MTA_6"})
        result = await reconcile_stops(GROUPS, {}, fetcher, batch_delay=0, fetch_timeout=0.05)
        self.assertEqual(result.unresolved, ["MTA_6"])
        self.assertEqual(len(result.stops), 5)

    async def test_lookup_avoids_refetching(self):
        lookup = StopLookup(stops={"MTA_1": REFERENCES["MTA_1"]})
        fetcher = FakeFetcher(REFERENCES)
        await reconcile_stops(GROUPS, {}, fetcher, lookup=lookup, batch_delay=0)
        self.assertNotIn("MTA_1", fetcher.calls)
        self.assertEqual(len(lookup.stops), 6)

    async def test_defaults_for_incomplete_records(self):
        groups = [{"id": "0", "name": "EAST", "stopIds": ["MTA_77"]}]
        result = await reconcile_stops(groups, {"MTA_77": {"id": "MTA_77"}}, FakeFetcher({}))
        stop = result.stops[0]
        self.assertEqual((stop.name, stop.code, stop.lat, stop.lon), ("Unknown Stop", "77", 0.0, 0.0))

    async def test_invalid_group_skipped_but_others_kept(self):
        groups = [{"id": "9", "name": {"name": ""}, "stopIds": ["MTA_1"]}] + GROUPS
        result = await reconcile_stops(groups, REFERENCES, FakeFetcher({}))
        self.assertEqual(len(result.directions), 2)
        self.assertEqual(len(result.stops), 6)

    async def test_nothing_resolved_is_an_error(self):
        with self.assertRaises(UpstreamDataShapeError):
            await reconcile_stops(GROUPS, {}, FakeFetcher({}), batch_delay=0)


class TestFetchMissingStops(unittest.IsolatedAsyncioTestCase):
    async def test_batches_are_bounded(self):
        ids = [f"MTA_{i}" for i in range(12)]
        fetcher = FakeFetcher({i: {"id": i} for i in ids})
        lookup = StopLookup()

        await fetch_missing_stops(ids, fetcher, lookup, batch_size=5, batch_delay=0)

        self.assertEqual(fetcher.max_in_flight, 5)
        self.assertEqual(fetcher.calls, ids)
        self.assertEqual(len(lookup.stops), 12)

    async def test_pause_between_batches(self):
        ids = [f"MTA_{i}" for i in range(12)]

        async def fetch(stop_id):
            return {"id": stop_id}

        with patch("bustime.reconcile.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await fetch_missing_stops(ids, fetch, StopLookup(), batch_size=5, batch_delay=0.5)

        self.assertEqual(sleep.await_args_list, [call(0.5), call(0.5)])

    async def test_no_pause_for_a_single_batch(self):
        async def fetch(stop_id):
            return {"id": stop_id}

        with patch("bustime.reconcile.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await fetch_missing_stops(["MTA_1", "MTA_2"], fetch, StopLookup(), batch_size=5, batch_delay=0.5)

        sleep.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
