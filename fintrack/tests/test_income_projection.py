import unittest
from decimal import Decimal

from fintrack.currency_conversion import MonthlyRates, RateCache
from fintrack.income_projection import (
    IncomeGoal,
    IncomeSource,
    project_income,
    projected_net,
    resolve_income_goal,
    resolve_priority,
)
from fintrack.money import ZERO
from fintrack.recurring_projection import RecurringTemplate
from fintrack.rollup import TransactionRecord, convert_transactions


class IncomeProjectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rates = MonthlyRates(
            current_month="2024-02",
            caches={"2024-02": RateCache(as_of="2024-02", rates={"EUR": Decimal("0.5")})},
        )
        self.templates = [
            RecurringTemplate(template_id="salary", type="INCOME", amount=Decimal("3000"), currency="USD"),
            RecurringTemplate(template_id="freelance", type="INCOME", amount=Decimal("200"), currency="EUR"),
            RecurringTemplate(template_id="rent", type="EXPENSE", amount=Decimal("1200"), currency="USD"),
        ]
        self.transactions = convert_transactions(
            [
                TransactionRecord(
                    type="INCOME",
                    amount=Decimal("3000"),
                    currency="USD",
                    category_id="salary",
                    month="2024-02",
                    recurring_template_id="salary",
                )
            ],
            "USD",
            self.rates,
        )

    def _project(self, **overrides):
        params = dict(
            month="2024-02",
            actual_income=Decimal("3000"),
            goal=None,
            templates=self.templates,
            transactions=self.transactions,
            budgeted_income=Decimal("2500"),
            target_currency="USD",
            rates=self.rates,
        )
        params.update(overrides)
        return project_income(**params)

    def test_goal_takes_priority(self) -> None:
        goal = IncomeGoal(amount=Decimal("2500"), currency="EUR")

        projection = self._project(goal=goal)

        self.assertEqual(projection.source, IncomeSource.GOAL)
        self.assertEqual(projection.planned_income, Decimal("5000.00"))
        self.assertEqual(projection.expected_remaining, Decimal("2000.00"))
        self.assertEqual(projection.recurring_income, Decimal("3400.00"))

    def test_goal_already_exceeded_expects_nothing_more(self) -> None:
        goal = IncomeGoal(amount=Decimal("1000"), currency="USD")

        projection = self._project(goal=goal)

        self.assertEqual(projection.source, IncomeSource.GOAL)
        self.assertEqual(projection.expected_remaining, ZERO)

    def test_recurring_income_counts_only_unapplied_templates(self) -> None:
        projection = self._project()

        self.assertEqual(projection.source, IncomeSource.RECURRING)
        self.assertEqual(projection.planned_income, Decimal("3400.00"))
        self.assertEqual(projection.expected_remaining, Decimal("400.00"))

    def test_zero_goal_falls_through_to_recurring(self) -> None:
        projection = self._project(goal=IncomeGoal(amount=Decimal("0"), currency="USD"))

        self.assertEqual(projection.source, IncomeSource.RECURRING)

    def test_budgeted_income_is_used_without_goal_or_templates(self) -> None:
        projection = self._project(templates=[], actual_income=Decimal("1000"))

        self.assertEqual(projection.source, IncomeSource.BUDGET)
        self.assertEqual(projection.planned_income, Decimal("2500"))
        self.assertEqual(projection.expected_remaining, Decimal("1500"))

    def test_nothing_planned_reports_none(self) -> None:
        projection = self._project(templates=[], budgeted_income=ZERO)

        self.assertEqual(projection.source, IncomeSource.NONE)
        self.assertEqual(projection.planned_income, ZERO)
        self.assertEqual(projection.expected_remaining, ZERO)

    def test_priority_stops_at_first_positive_step(self) -> None:
        calls = []

        def step(name, value):
            def produce():
                calls.append(name)
                return value

            return name, produce

        result = resolve_priority([step("a", ZERO), step("b", Decimal("5")), step("c", Decimal("9"))])

        self.assertEqual(result, ("b", Decimal("5")))
        self.assertEqual(calls, ["a", "b"])

    def test_month_goal_overrides_default(self) -> None:
        default_goal = IncomeGoal(amount=Decimal("4000"), currency="USD", is_default=True)
        february = IncomeGoal(amount=Decimal("4500"), currency="USD", month_key="2024-02")

        self.assertIs(resolve_income_goal([default_goal, february], "2024-02"), february)
        self.assertIs(resolve_income_goal([default_goal, february], "2024-03"), default_goal)
        self.assertIsNone(resolve_income_goal([february], "2024-03"))

    def test_projected_net_ignores_overspent_budgets(self) -> None:
        self.assertEqual(
            projected_net(Decimal("3000"), Decimal("400"), Decimal("600"), Decimal("-100")),
            Decimal("2800"),
        )
        self.assertEqual(
            projected_net(Decimal("3000"), Decimal("0"), Decimal("150"), Decimal("550")),
            Decimal("2300"),
        )


if __name__ == "__main__":
    unittest.main()
