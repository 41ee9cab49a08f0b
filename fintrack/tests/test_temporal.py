import unittest
from datetime import date
from decimal import Decimal

from fintrack.records import FlowType, NormalizedTransaction
from fintrack.temporal import (
    DateWindow,
    TimeFocus,
    aggregate_comparative_trend,
    aggregate_dimensions,
    aggregate_temporal_trend,
    calculate_monthly_burn,
    calculate_temporal_variance,
    filter_by_window,
    get_comparison_stats,
    get_temporal_windows,
    is_date_within_focus,
    quarter_start,
)


def make_transaction(
    category: str,
    sub_category: str,
    amount: str,
    on: str = "2024-03-01",
    flow_type: FlowType = FlowType.EXPENSE,
) -> NormalizedTransaction:
    return NormalizedTransaction(
        id=f"{category}-{sub_category}-{on}",
        date=on,
        category=category,
        sub_category=sub_category,
        amount=Decimal(amount),
        type=flow_type,
    )


class TemporalWindowTests(unittest.TestCase):
    def test_month_to_date_shadow_ends_the_day_before(self) -> None:
        windows = get_temporal_windows(TimeFocus.MTD, today=date(2024, 3, 15))

        self.assertEqual(windows.current, DateWindow(date(2024, 3, 1), date(2024, 3, 15)))
        self.assertEqual(windows.shadow, DateWindow(date(2024, 2, 15), date(2024, 2, 29)))

    def test_month_to_date_shadow_has_same_length_at_month_end(self) -> None:
        windows = get_temporal_windows(TimeFocus.MTD, today=date(2024, 3, 31))

        self.assertEqual(windows.shadow, DateWindow(date(2024, 1, 30), date(2024, 2, 29)))
        self.assertEqual(windows.shadow.days, windows.current.days)

    def test_month_to_date_mid_month(self) -> None:
        windows = get_temporal_windows(TimeFocus.MTD, today=date(2024, 10, 18))

        self.assertEqual(windows.shadow, DateWindow(date(2024, 9, 13), date(2024, 9, 30)))

    def test_quarter_boundaries(self) -> None:
        self.assertEqual(quarter_start(date(2024, 5, 20)), date(2024, 4, 1))
        self.assertEqual(quarter_start(date(2024, 12, 31)), date(2024, 10, 1))

        windows = get_temporal_windows(TimeFocus.QTD, today=date(2024, 5, 20))

        self.assertEqual(windows.current.start, date(2024, 4, 1))
        self.assertEqual(windows.shadow, DateWindow(date(2024, 2, 11), date(2024, 3, 31)))
        self.assertEqual(windows.shadow.days, windows.current.days)

    def test_year_to_date(self) -> None:
        windows = get_temporal_windows("YTD", today=date(2024, 3, 15))

        self.assertEqual(windows.current.start, date(2024, 1, 1))
        self.assertEqual(windows.shadow, DateWindow(date(2023, 10, 18), date(2023, 12, 31)))

    def test_rolling_twelve_months(self) -> None:
        windows = get_temporal_windows(TimeFocus.ROLLING_12M, today=date(2024, 3, 15))

        self.assertEqual(windows.current, DateWindow(date(2023, 3, 15), date(2024, 3, 15)))
        self.assertEqual(windows.shadow, DateWindow(date(2022, 3, 15), date(2023, 3, 14)))

    def test_custom_range_shadow_has_same_length(self) -> None:
        windows = get_temporal_windows(
            TimeFocus.CUSTOM,
            today=date(2024, 3, 15),
            custom_start=date(2024, 2, 10),
            custom_end=date(2024, 2, 1),
        )

        self.assertEqual(windows.current, DateWindow(date(2024, 2, 1), date(2024, 2, 10)))
        self.assertEqual(windows.shadow, DateWindow(date(2024, 1, 22), date(2024, 1, 31)))
        self.assertEqual(windows.current.days, windows.shadow.days)

    def test_custom_without_dates_raises(self) -> None:
        with self.assertRaises(ValueError):
            get_temporal_windows(TimeFocus.CUSTOM, today=date(2024, 3, 15))

    def test_full_history_starts_at_history_start(self) -> None:
        windows = get_temporal_windows(
            TimeFocus.FULL_HISTORY,
            today=date(2024, 3, 15),
            history_start=date(2023, 6, 1),
        )

        self.assertEqual(windows.current.start, date(2023, 6, 1))
        self.assertEqual(windows.shadow.end, date(2023, 5, 31))

    def test_is_date_within_focus(self) -> None:
        today = date(2024, 3, 15)

        self.assertTrue(is_date_within_focus("2024-03-10", TimeFocus.MTD, today))
        self.assertFalse(is_date_within_focus("2024-02-10", TimeFocus.MTD, today))
        self.assertFalse(is_date_within_focus("garbage", TimeFocus.MTD, today))

    def test_filter_by_window(self) -> None:
        items = [make_transaction("A", "a", "1", on) for on in ("2024-01-31", "2024-02-01", "2024-02-29")]

        kept = filter_by_window(items, DateWindow(date(2024, 2, 1), date(2024, 2, 29)))

        self.assertEqual([item.date for item in kept], ["2024-02-01", "2024-02-29"])


class DimensionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.timeline = [
            make_transaction("Housing", "Rent", "1000"),
            make_transaction("Housing", "Utilities", "100"),
            make_transaction("Food", "Groceries", "300"),
            make_transaction("Salary", "Salary", "5000", flow_type=FlowType.INCOME),
            make_transaction("Food", "Dining", "50", on="2024-02-01"),
        ]

    def test_top_level_groups_sorted_by_total(self) -> None:
        groups = aggregate_dimensions(self.timeline, [], FlowType.EXPENSE)

        self.assertEqual([(group.name, group.total, group.count) for group in groups], [
            ("Housing", Decimal("1100"), 2),
            ("Food", Decimal("350"), 2),
        ])

    def test_one_level_drill_groups_subcategories(self) -> None:
        groups = aggregate_dimensions(self.timeline, ["Food"], "EXPENSE")

        self.assertEqual([group.name for group in groups], ["Groceries", "Dining"])

    def test_deep_paths_return_nothing(self) -> None:
        self.assertEqual(aggregate_dimensions(self.timeline, ["A", "B", "C"], FlowType.EXPENSE), [])
        self.assertEqual(aggregate_dimensions(self.timeline, ["Food", "Groceries"], FlowType.EXPENSE), [])

    def test_reserved_labels_are_not_grouped(self) -> None:
        timeline = self.timeline + [make_transaction("constructor", "x", "999")]

        groups = aggregate_dimensions(timeline, [], FlowType.EXPENSE)

        self.assertNotIn("constructor", [group.name for group in groups])

    def test_temporal_trend_by_month(self) -> None:
        trend = aggregate_temporal_trend(self.timeline, ["Food"], FlowType.EXPENSE)

        self.assertEqual([(point.date, point.amount) for point in trend], [
            ("2024-02", Decimal("50")),
            ("2024-03", Decimal("300")),
        ])

    def test_comparative_trend_is_cumulative(self) -> None:
        current = [
            make_transaction("Food", "Groceries", "100", on="2024-03-01"),
            make_transaction("Food", "Groceries", "50", on="2024-04-01"),
        ]
        shadow = [make_transaction("Food", "Groceries", "80", on="2023-03-01")]

        points = aggregate_comparative_trend(current, shadow, [], FlowType.EXPENSE)

        self.assertEqual([(point.current, point.shadow) for point in points], [
            (Decimal("100"), Decimal("80")),
            (Decimal("150"), Decimal("80")),
        ])


class VarianceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.current = [
            make_transaction("Housing", "Rent", "1100"),
            make_transaction("Food", "Groceries", "300"),
            make_transaction("Hobbies", "Climbing", "40"),
            make_transaction("Fixed", "Insurance", "500"),
        ]
        self.shadow = [
            make_transaction("Housing", "Rent", "1000", on="2024-02-01"),
            make_transaction("Food", "Groceries", "400", on="2024-02-01"),
            make_transaction("Fixed", "Insurance", "100", on="2024-02-01"),
        ]

    def test_rows_sorted_by_absolute_delta(self) -> None:
        rows = calculate_temporal_variance(self.current, self.shadow, [], FlowType.EXPENSE)

        self.assertEqual([row.name for row in rows], ["Fixed", "Housing", "Food", "Hobbies"])
        housing = rows[1]
        self.assertEqual(housing.delta, Decimal("100"))
        self.assertEqual(housing.pct, Decimal("10"))
        self.assertEqual(rows[2].pct, Decimal("-25"))

    def test_new_category_reports_one_hundred_percent(self) -> None:
        rows = calculate_temporal_variance(self.current, self.shadow, [], FlowType.EXPENSE)
        hobbies = next(row for row in rows if row.name == "Hobbies")

        self.assertEqual(hobbies.prev_total, Decimal("0"))
        self.assertEqual(hobbies.pct, Decimal("100"))

    def test_exclude_fixed_drops_literal_fixed_category(self) -> None:
        rows = calculate_temporal_variance(self.current, self.shadow, [], FlowType.EXPENSE, exclude_fixed=True)

        self.assertNotIn("Fixed", [row.name for row in rows])


class ComparisonTests(unittest.TestCase):
    def test_comparison_stats(self) -> None:
        stats = get_comparison_stats(Decimal("120"), Decimal("100"))

        self.assertEqual(stats.delta, Decimal("20"))
        self.assertEqual(stats.pct, Decimal("20"))
        self.assertEqual(get_comparison_stats(Decimal("5"), Decimal("0")).pct, Decimal("0"))

    def test_monthly_burn(self) -> None:
        self.assertEqual(calculate_monthly_burn(Decimal("12"), "Yearly"), Decimal("1"))
        self.assertEqual(calculate_monthly_burn(Decimal("10"), "weekly"), Decimal("43.3"))
        self.assertEqual(calculate_monthly_burn(Decimal("5"), "Monthly"), Decimal("5"))
        self.assertEqual(calculate_monthly_burn(Decimal("5"), "daily"), Decimal("0"))


if __name__ == "__main__":
    unittest.main()
