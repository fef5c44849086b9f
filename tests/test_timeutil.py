import unittest
from datetime import timedelta, timezone

from ephfleet_core.timeutil import format_lifetime, parse_datetime, parse_lifetime


class LifetimeTests(unittest.TestCase):
    def test_parse_variants(self) -> None:
        self.assertEqual(timedelta(hours=12), parse_lifetime("12h"))
        self.assertEqual(timedelta(minutes=30), parse_lifetime("30m"))
        self.assertEqual(timedelta(hours=2, minutes=30), parse_lifetime("2h30m"))
        self.assertEqual(timedelta(hours=12), parse_lifetime("12h0m0s"))
        self.assertEqual(timedelta(seconds=45), parse_lifetime("45s"))

    def test_parse_rejects_garbage(self) -> None:
        for value in ("", "12", "h", "12 hours", "-1h"):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_lifetime(value)

    def test_format(self) -> None:
        self.assertEqual("12h0m0s", format_lifetime(timedelta(hours=12)))
        self.assertEqual("36h5m7s", format_lifetime(timedelta(days=1, hours=12, minutes=5, seconds=7)))


class DatetimeTests(unittest.TestCase):
    def test_zulu_and_naive_become_utc(self) -> None:
        self.assertEqual(timezone.utc, parse_datetime("2024-05-01T10:00:00Z").tzinfo)
        self.assertEqual(timezone.utc, parse_datetime("2024-05-01T10:00:00").tzinfo)


if __name__ == "__main__":  # pragma: no cover - test hook
    unittest.main()
