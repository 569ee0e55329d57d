import unittest
from datetime import datetime, timedelta, timezone

from m365_admin_toolkit.expiration import (
    ExpirationStatus,
    classify_expiration,
    days_left,
    describe_expiration,
    parse_graph_datetime,
)
from m365_admin_toolkit.reporting.models import Status

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestClassifyExpiration(unittest.TestCase):
    def test_threshold_boundaries(self):
        cases = [
            (29, ExpirationStatus.NEAR_EXPIRY, Status.WARNING),
            (30, ExpirationStatus.NEAR_EXPIRY, Status.WARNING),
            (31, ExpirationStatus.HEALTHY, Status.PASS),
            (-1, ExpirationStatus.EXPIRED, Status.FAIL),
        ]
        for offset, expected, status in cases:
            with self.subTest(offset=offset):
                state = classify_expiration(NOW + timedelta(days=offset), 30, NOW)
                self.assertEqual(state, expected)
                self.assertEqual(state.result_status, status)

    def test_expires_later_today_is_near_expiry(self):
        state = classify_expiration(NOW + timedelta(hours=3), 30, NOW)
        self.assertEqual(state, ExpirationStatus.NEAR_EXPIRY)

    def test_a_second_ago_is_expired(self):
        state = classify_expiration(NOW - timedelta(seconds=1), 30, NOW)
        self.assertEqual(state, ExpirationStatus.EXPIRED)

    def test_zero_threshold(self):
        self.assertEqual(classify_expiration(NOW + timedelta(days=1), 0, NOW), ExpirationStatus.HEALTHY)
        self.assertEqual(classify_expiration(NOW, 0, NOW), ExpirationStatus.NEAR_EXPIRY)

    def test_naive_datetimes_are_utc(self):
        naive_exp = datetime(2025, 6, 10, 12, 0, 0)
        self.assertEqual(days_left(naive_exp, NOW), 9)

    def test_same_input_same_output(self):
        exp = NOW + timedelta(days=12, hours=5)
        first = (classify_expiration(exp, 30, NOW), describe_expiration(exp, NOW))
        second = (classify_expiration(exp, 30, NOW), describe_expiration(exp, NOW))
        self.assertEqual(first, second)


class TestDescribeExpiration(unittest.TestCase):
    def test_descriptions(self):
        self.assertEqual(
            describe_expiration(NOW - timedelta(days=3), NOW),
            "Expired 3 day(s) ago (2025-05-29)",
        )
        self.assertEqual(describe_expiration(NOW + timedelta(hours=2), NOW), "Expires today (2025-06-01)")
        self.assertEqual(
            describe_expiration(NOW + timedelta(days=10), NOW),
            "Expires in 10 day(s) (2025-06-11)",
        )


class TestParseGraphDatetime(unittest.TestCase):
    def test_seven_digit_fraction_with_z(self):
        parsed = parse_graph_datetime("2025-03-01T10:00:00.1234567Z")
        self.assertEqual(parsed, datetime(2025, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc))

    def test_no_fraction(self):
        parsed = parse_graph_datetime("2025-03-01T10:00:00Z")
        self.assertEqual(parsed, datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc))

    def test_offset_is_converted_to_utc(self):
        parsed = parse_graph_datetime("2025-03-01T12:00:00+02:00")
        self.assertEqual(parsed, datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc))

    def test_invalid_values(self):
        for value in (None, "", "not a date", 12345):
            with self.subTest(value=value):
                self.assertIsNone(parse_graph_datetime(value))


if __name__ == "__main__":
    unittest.main()
