import unittest
from datetime import date
from decimal import Decimal

from paycycle.pay_periods import IncomeSource
from paycycle.surplus_detector import SurplusMonth, detect_surplus, expected_per_month


def _source(source_id: int, kind: str, detail, amount=None, active: bool = True) -> IncomeSource:
    return IncomeSource(
        id=source_id,
        name=f"Source {source_id}",
        pay_schedule=kind,
        schedule_detail=detail,
        default_amount=amount,
        is_active=active,
    )


class DetectSurplusTests(unittest.TestCase):
    def test_weekly_five_friday_month(self) -> None:
        result = detect_surplus(
            [_source(1, "weekly", {"weekday": 5}, Decimal("1000"))],
            date(2025, 1, 1),
            date(2025, 1, 31),
        )

        self.assertEqual(
            result.surplus_months,
            [
                SurplusMonth(
                    month="January 2025",
                    month_key="2025-01",
                    source_id=1,
                    source="Source 1",
                    extra_checks=1,
                    surplus_amount=Decimal("1000"),
                )
            ],
        )
        self.assertEqual(result.annual_surplus, Decimal("1000"))

    def test_weekly_full_year(self) -> None:
        result = detect_surplus(
            [_source(1, "weekly", {"weekday": 5}, Decimal("1000"))],
            date(2025, 1, 1),
            date(2025, 12, 31),
        )

        self.assertEqual(
            [month.month_key for month in result.surplus_months],
            ["2025-01", "2025-05", "2025-08", "2025-10"],
        )
        self.assertEqual(result.annual_surplus, Decimal("4000"))

    def test_biweekly_three_check_months(self) -> None:
        result = detect_surplus(
            [_source(2, "biweekly", {"weekday": 5, "anchor_date": "2025-01-03"}, 2000)],
            date(2025, 1, 1),
            date(2025, 12, 31),
        )

        self.assertEqual(
            [(month.month, month.extra_checks) for month in result.surplus_months],
            [("January 2025", 1), ("August 2025", 1)],
        )
        self.assertEqual(result.annual_surplus, Decimal("4000"))

    def test_semimonthly_never_has_surplus(self) -> None:
        result = detect_surplus(
            [_source(3, "semimonthly", {"days": [1, 15]}, Decimal("1500"))],
            date(2025, 1, 1),
            date(2025, 12, 31),
        )

        self.assertEqual(result.surplus_months, [])
        self.assertEqual(result.annual_surplus, Decimal("0"))

    def test_bad_inactive_and_unknown_sources_are_skipped(self) -> None:
        sources = [
            _source(4, "weekly", "{broken", Decimal("100")),
            _source(5, "fortnightly", {}, Decimal("100")),
            _source(6, "weekly", {"weekday": 5}, Decimal("100"), active=False),
            _source(7, "weekly", {"weekday": 5}, Decimal("250")),
        ]

        result = detect_surplus(sources, date(2025, 1, 1), date(2025, 1, 31))

        self.assertEqual([month.source_id for month in result.surplus_months], [7])
        self.assertEqual(result.annual_surplus, Decimal("250"))

    def test_missing_amount_is_flagged_with_zero(self) -> None:
        result = detect_surplus(
            [_source(8, "weekly", {"weekday": 5})],
            date(2025, 1, 1),
            date(2025, 1, 31),
        )

        self.assertEqual(len(result.surplus_months), 1)
        self.assertEqual(result.surplus_months[0].surplus_amount, Decimal("0"))

    def test_results_ordered_by_month_then_source(self) -> None:
        sources = [
            _source(10, "biweekly", {"anchor_date": "2025-01-03"}, Decimal("2000")),
            _source(11, "weekly", {"weekday": 5}, Decimal("1000")),
        ]

        result = detect_surplus(sources, date(2025, 1, 1), date(2025, 12, 31))

        self.assertEqual(
            [(month.month_key, month.source_id) for month in result.surplus_months],
            [
                ("2025-01", 10),
                ("2025-01", 11),
                ("2025-05", 11),
                ("2025-08", 10),
                ("2025-08", 11),
                ("2025-10", 11),
            ],
        )
        self.assertEqual(result.annual_surplus, Decimal("8000"))

    def test_expected_per_month(self) -> None:
        self.assertEqual(expected_per_month("weekly"), 4)
        self.assertEqual(expected_per_month(" Biweekly "), 2)
        self.assertEqual(expected_per_month("semimonthly"), 2)
        self.assertEqual(expected_per_month("one_time"), 1)
        self.assertEqual(expected_per_month("unknown"), 1)


if __name__ == "__main__":
    unittest.main()
