import unittest
from datetime import datetime

from valheim_status.date_utils import format_ago, parse_docker_time_ms, parse_log_time_ms


class DateUtilsTests(unittest.TestCase):
    def test_parse_log_time_reads_local_time(self) -> None:
        expected = int(datetime(2026, 2, 17, 20, 8, 1).timestamp() * 1000)
        self.assertEqual(parse_log_time_ms("02/17/2026 20:08:01: Got connection SteamID 1"), expected)

    def test_parse_log_time_rejects_missing_or_invalid_stamp(self) -> None:
        self.assertIsNone(parse_log_time_ms("Got connection SteamID 1"))
        self.assertIsNone(parse_log_time_ms("13/45/2026 20:08:01: nonsense"))
        self.assertIsNone(parse_log_time_ms(""))

    def test_parse_docker_time_handles_nanoseconds_and_offsets(self) -> None:
        self.assertEqual(parse_docker_time_ms("2026-02-17T19:00:00.123456789Z"), 1_771_354_800_123)
        self.assertEqual(parse_docker_time_ms("2026-02-17T21:00:00+02:00"), 1_771_354_800_000)

    def test_parse_docker_time_treats_zero_time_as_unset(self) -> None:
        self.assertIsNone(parse_docker_time_ms("0001-01-01T00:00:00Z"))
        self.assertIsNone(parse_docker_time_ms(None))
        self.assertIsNone(parse_docker_time_ms("yesterday"))

    def test_format_ago_buckets(self) -> None:
        now = 1_000_000_000
        self.assertEqual(format_ago(now - 12_000, now), "12s")
        self.assertEqual(format_ago(now - 5 * 60_000, now), "5m")
        self.assertEqual(format_ago(now - 3 * 3_600_000, now), "3h")
        self.assertEqual(format_ago(now - 72 * 3_600_000, now), "3d")
        self.assertIsNone(format_ago(None, now))
        self.assertIsNone(format_ago(now + 1, now))


if __name__ == "__main__":
    unittest.main()
