import unittest
from datetime import date, timedelta
from decimal import Decimal

from cashflow.cache import CachedItemSource, CacheOptions, ExpiringCache
from cashflow.items import RecurringItem


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingItemSource:
    def __init__(self) -> None:
        self.calls = 0

    def fetch_recurring_items(self, user_id: str):
        self.calls += 1
        return [
            RecurringItem(
                id=f"{user_id}-rent",
                name="Rent",
                display_type="fixed-expense",
                amount=Decimal("1200"),
                frequency="monthly",
                start_date=date(2024, 1, 1),
            )
        ]


class ExpiringCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = ExpiringCache(default_ttl=timedelta(seconds=10), clock=self.clock)

    def test_value_expires_after_ttl(self) -> None:
        self.cache.set("key", "value")

        self.clock.now = 9.5
        self.assertEqual(self.cache.get("key"), "value")
        self.clock.now = 10
        self.assertIsNone(self.cache.get("key"))
        self.assertFalse(self.cache.has("key"))

    def test_clear_and_clear_all(self) -> None:
        self.cache.set("a", 1)
        self.cache.set("b", 2, ttl=timedelta(seconds=60))

        self.cache.clear("a")
        self.assertFalse(self.cache.has("a"))
        self.assertTrue(self.cache.has("b"))
        self.cache.clear_all()
        self.assertFalse(self.cache.has("b"))


class CachedItemSourceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.source = CountingItemSource()
        self.cached = CachedItemSource(
            source=self.source,
            cache=ExpiringCache(clock=self.clock),
            options=CacheOptions(ttl=timedelta(seconds=30), key="recurring-items"),
        )

    def test_reuses_items_until_expiry(self) -> None:
        first = self.cached.fetch_recurring_items("user-1")
        second = self.cached.fetch_recurring_items("user-1")

        self.assertEqual(first, second)
        self.assertEqual(self.source.calls, 1)

        self.clock.now = 31
        self.cached.fetch_recurring_items("user-1")
        self.assertEqual(self.source.calls, 2)

    def test_users_are_cached_separately(self) -> None:
        self.cached.fetch_recurring_items("user-1")
        items = self.cached.fetch_recurring_items("user-2")

        self.assertEqual(items[0].id, "user-2-rent")
        self.assertEqual(self.source.calls, 2)

    def test_invalidate_forces_reload(self) -> None:
        self.cached.fetch_recurring_items("user-1")
        self.cached.invalidate("user-1")
        self.cached.fetch_recurring_items("user-1")

        self.assertEqual(self.source.calls, 2)
        self.assertEqual(self.cached.cache_key("user-1"), "recurring-items:user-1")


if __name__ == "__main__":
    unittest.main()
