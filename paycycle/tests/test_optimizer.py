import unittest
from datetime import date
from decimal import Decimal

from paycycle.optimizer import (
    BALANCE_THRESHOLD,
    MAX_ITERATIONS,
    REBALANCE_REASON,
    Move,
    OptAssignment,
    OptBill,
    OptPeriod,
    Suggestion,
    can_pay_from,
    optimize,
    plan_moves,
)

FIRST = OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("2000"))
SECOND = OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("2000"))


class OptimizeTests(unittest.TestCase):
    def test_moves_late_bills_to_second_paycheck(self) -> None:
        bills = [
            OptBill(id=1, name="Rent", due_day=5, amount=Decimal("1200")),
            OptBill(id=2, name="Phone", due_day=20, amount=Decimal("150")),
            OptBill(id=3, name="Internet", due_day=22, amount=Decimal("60")),
        ]
        assignments = [
            OptAssignment(bill_id=1, period_id=1, assignment_id=101),
            OptAssignment(bill_id=2, period_id=1, assignment_id=102),
            OptAssignment(bill_id=3, period_id=1, assignment_id=103),
        ]

        result = optimize(bills, [SECOND, FIRST], assignments)

        self.assertEqual(result.current_min_balance, Decimal("590"))
        self.assertEqual(result.optimized_min_balance, Decimal("800"))
        self.assertEqual(result.improvement, Decimal("210"))
        self.assertEqual(
            result.suggestions,
            [
                Suggestion(
                    assignment_id=102,
                    bill_id=2,
                    bill_name="Phone",
                    from_period_id=1,
                    to_period_id=2,
                    from_period=date(2025, 1, 1),
                    to_period=date(2025, 1, 15),
                    amount=Decimal("150"),
                ),
                Suggestion(
                    assignment_id=103,
                    bill_id=3,
                    bill_name="Internet",
                    from_period_id=1,
                    to_period_id=2,
                    from_period=date(2025, 1, 1),
                    to_period=date(2025, 1, 15),
                    amount=Decimal("60"),
                ),
            ],
        )
        self.assertEqual(result.suggestions[0].reason, REBALANCE_REASON)
        self.assertEqual(
            plan_moves(result.suggestions),
            [Move(assignment_id=102, to_period_id=2), Move(assignment_id=103, to_period_id=2)],
        )

    def test_equal_bills_split_evenly(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("1500")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("1500")),
        ]
        bills = [OptBill(id=n, name=f"Bill {n}", amount=Decimal("300")) for n in range(1, 5)]
        assignments = [OptAssignment(bill_id=n, period_id=1) for n in range(1, 5)]

        result = optimize(bills, periods, assignments)

        self.assertEqual(len(result.suggestions), 2)
        self.assertEqual(result.current_min_balance, Decimal("300"))
        self.assertEqual(result.optimized_min_balance, Decimal("900"))
        self.assertEqual(result.improvement, Decimal("600"))

    def test_single_movable_bill_oscillates_without_improvement(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("1000")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("1000")),
        ]
        bills = [OptBill(id=1, name="Loan", amount=Decimal("500"))]
        assignments = [OptAssignment(bill_id=1, period_id=1, assignment_id=9)]

        result = optimize(bills, periods, assignments)

        self.assertEqual(len(result.suggestions), MAX_ITERATIONS)
        self.assertEqual(result.improvement, Decimal("0"))
        self.assertEqual(result.optimized_min_balance, Decimal("500"))
        self.assertEqual(plan_moves(result.suggestions), [])

    def test_moves_largest_eligible_bill_first(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("1000")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("1000")),
        ]
        bills = [
            OptBill(id=1, name="Small", amount=Decimal("100")),
            OptBill(id=2, name="Large", amount=Decimal("300")),
            OptBill(id=3, name="Medium", amount=Decimal("200")),
        ]
        assignments = [OptAssignment(bill_id=n, period_id=1) for n in (1, 2, 3)]

        result = optimize(bills, periods, assignments)

        self.assertEqual([item.bill_name for item in result.suggestions], ["Large"])
        self.assertEqual(result.optimized_min_balance, Decimal("700"))
        self.assertEqual(result.improvement, Decimal("300"))

    def test_due_day_blocks_move_to_later_paycheck(self) -> None:
        bills = [OptBill(id=1, name="Rent", due_day=10, amount=Decimal("1500"))]
        assignments = [OptAssignment(bill_id=1, period_id=1)]

        result = optimize(bills, [FIRST, SECOND], assignments)

        self.assertEqual(result.suggestions, [])
        self.assertEqual(result.current_min_balance, Decimal("500"))
        self.assertEqual(result.improvement, Decimal("0"))

    def test_bill_larger_than_gap_is_not_moved(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("100")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("1000")),
        ]
        bills = [OptBill(id=1, name="Rent", due_day=10, amount=Decimal("1000"))]
        assignments = [OptAssignment(bill_id=1, period_id=2)]

        result = optimize(bills, periods, assignments)

        self.assertEqual(result.suggestions, [])
        self.assertEqual(result.current_min_balance, Decimal("0"))
        self.assertEqual(result.optimized_min_balance, Decimal("0"))
        self.assertEqual(result.improvement, Decimal("0"))

    def test_bill_without_due_day_moves_anywhere(self) -> None:
        bills = [OptBill(id=1, name="Gift", due_day=None, amount=Decimal("400"))]
        assignments = [OptAssignment(bill_id=1, period_id=1)]

        result = optimize(bills, [FIRST, SECOND], assignments, max_iterations=1)

        self.assertEqual([item.to_period_id for item in result.suggestions], [2])

    def test_bill_already_in_target_period_is_not_moved(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("500")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("2000")),
        ]
        bills = [OptBill(id=1, name="Daycare", amount=Decimal("300"))]
        assignments = [
            OptAssignment(bill_id=1, period_id=1),
            OptAssignment(bill_id=1, period_id=2, amount=Decimal("100")),
        ]

        result = optimize(bills, periods, assignments)

        self.assertEqual(result.suggestions, [])
        self.assertEqual(result.current_min_balance, Decimal("200"))

    def test_gap_below_threshold_is_left_alone(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=Decimal("1000")),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=Decimal("1000")),
        ]
        bills = [OptBill(id=1, name="Streaming", amount=Decimal("40"))]
        assignments = [OptAssignment(bill_id=1, period_id=1)]

        default = optimize(bills, periods, assignments)
        tuned = optimize(
            bills, periods, assignments, balance_threshold=Decimal("10"), max_iterations=1
        )

        self.assertLess(Decimal("40"), BALANCE_THRESHOLD)
        self.assertEqual(default.suggestions, [])
        self.assertEqual(len(tuned.suggestions), 1)
        self.assertEqual(tuned.optimized_min_balance, Decimal("960"))
        self.assertEqual(tuned.improvement, Decimal("0"))

    def test_assignment_amount_overrides_bill_amount(self) -> None:
        bills = [OptBill(id=1, name="Power", amount=Decimal("100"))]
        assignments = [OptAssignment(bill_id=1, period_id=1, amount=Decimal("75"))]

        result = optimize(bills, [FIRST], assignments)

        self.assertEqual(result.current_min_balance, Decimal("1925"))
        self.assertEqual(result.suggestions, [])

    def test_unknown_bills_and_periods_are_ignored(self) -> None:
        bills = [OptBill(id=1, name="Phone", due_day=20, amount=Decimal("150"))]
        assignments = [
            OptAssignment(bill_id=1, period_id=1),
            OptAssignment(bill_id=99, period_id=1),
            OptAssignment(bill_id=1, period_id=42),
        ]

        result = optimize(bills, [FIRST, SECOND], assignments, max_iterations=1)

        self.assertEqual(result.current_min_balance, Decimal("1850"))
        self.assertEqual(len(result.suggestions), 1)
        self.assertEqual(result.suggestions[0].to_period_id, 2)
        self.assertEqual(result.optimized_min_balance, Decimal("1850"))

    def test_accepts_plain_numbers(self) -> None:
        periods = [
            OptPeriod(id=1, pay_date=date(2025, 1, 1), income=2000),
            OptPeriod(id=2, pay_date=date(2025, 1, 15), income=2000),
        ]
        bills = [OptBill(id=1, name="Phone", due_day=20, amount=150)]

        result = optimize(bills, periods, [OptAssignment(bill_id=1, period_id=1)])

        self.assertEqual(result.current_min_balance, Decimal("1850"))

    def test_inputs_are_not_mutated(self) -> None:
        bills = [OptBill(id=1, name="Phone", due_day=20, amount=Decimal("150"))]
        assignments = [OptAssignment(bill_id=1, period_id=1, assignment_id=5)]
        snapshot = list(assignments)

        optimize(bills, [FIRST, SECOND], assignments)

        self.assertEqual(assignments, snapshot)

    def test_empty_and_single_period_inputs(self) -> None:
        bills = [OptBill(id=1, name="Phone", amount=Decimal("150"))]
        assignments = [OptAssignment(bill_id=1, period_id=1)]

        empty = optimize([], [], [])
        single = optimize(bills, [FIRST], assignments)

        self.assertEqual(empty.suggestions, [])
        self.assertEqual(empty.current_min_balance, Decimal("0"))
        self.assertEqual(single.suggestions, [])
        self.assertEqual(single.current_min_balance, Decimal("1850"))
        self.assertEqual(single.improvement, Decimal("0"))


class CanPayFromTests(unittest.TestCase):
    def test_pay_day_must_not_be_after_due_day(self) -> None:
        self.assertTrue(can_pay_from(1, 5))
        self.assertTrue(can_pay_from(15, 15))
        self.assertFalse(can_pay_from(15, 10))
        self.assertTrue(can_pay_from(31, 0))
        self.assertTrue(can_pay_from(31, None))


class PlanMovesTests(unittest.TestCase):
    def _suggestion(self, assignment_id, from_id: int, to_id: int) -> Suggestion:
        return Suggestion(
            assignment_id=assignment_id,
            bill_id=1,
            bill_name="Bill",
            from_period_id=from_id,
            to_period_id=to_id,
            from_period=date(2025, 1, from_id),
            to_period=date(2025, 1, to_id),
            amount=Decimal("10"),
        )

    def test_collapses_chains_to_final_target(self) -> None:
        suggestions = [
            self._suggestion(1, 1, 2),
            self._suggestion(2, 1, 3),
            self._suggestion(1, 2, 3),
            self._suggestion(None, 1, 2),
        ]

        self.assertEqual(
            plan_moves(suggestions),
            [Move(assignment_id=1, to_period_id=3), Move(assignment_id=2, to_period_id=3)],
        )


if __name__ == "__main__":
    unittest.main()
