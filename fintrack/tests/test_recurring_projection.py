import unittest
from datetime import date
from decimal import Decimal

from fintrack.currency_conversion import MonthlyRates, RateCache
from fintrack.recurring_projection import (
    ProjectedEntry,
    RecurringTemplate,
    active_templates,
    project_recurring_templates,
    sum_templates,
)
from fintrack.rollup import TransactionRecord, TransactionType


class RecurringProjectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rates = MonthlyRates(
            current_month="2024-02",
            caches={"2024-02": RateCache(as_of="2024-02", rates={"EUR": Decimal("0.5")})},
        )

    def test_active_window_is_inclusive(self) -> None:
        template = RecurringTemplate(
            template_id="rent",
            type="EXPENSE",
            amount=Decimal("1200"),
            currency="USD",
            start_month_key="2024-01",
            end_month_key="2024-03",
        )

        self.assertFalse(template.is_active_for("2023-12"))
        self.assertTrue(template.is_active_for("2024-01"))
        self.assertTrue(template.is_active_for("2024-03"))
        self.assertFalse(template.is_active_for("2024-04"))

    def test_inactive_template_is_never_active(self) -> None:
        template = RecurringTemplate(
            template_id="gym",
            type="EXPENSE",
            amount=Decimal("40"),
            currency="USD",
            is_active=False,
        )

        self.assertFalse(template.is_active_for("2024-02"))

    def test_filters_by_type(self) -> None:
        templates = [
            RecurringTemplate(template_id="salary", type="INCOME", amount=Decimal("3000"), currency="USD"),
            RecurringTemplate(template_id="rent", type="EXPENSE", amount=Decimal("1200"), currency="USD"),
        ]

        active = active_templates(templates, "2024-02", TransactionType.INCOME)

        self.assertEqual([template.template_id for template in active], ["salary"])

    def test_sum_converts_to_target_currency(self) -> None:
        templates = [
            RecurringTemplate(template_id="salary", type="INCOME", amount=Decimal("3000"), currency="USD"),
            RecurringTemplate(template_id="bonus", type="INCOME", amount=Decimal("100"), currency="EUR"),
        ]

        self.assertEqual(sum_templates(templates, "USD", self.rates, "2024-02"), Decimal("3200.00"))

    def test_projects_pending_templates_and_skips_applied_ones(self) -> None:
        templates = [
            RecurringTemplate(
                template_id="salary",
                type="INCOME",
                amount=Decimal("3000"),
                currency="USD",
                day_of_month=25,
            ),
            RecurringTemplate(
                template_id="freelance",
                type="INCOME",
                amount=Decimal("400"),
                currency="EUR",
                day_of_month=31,
                description="Retainer",
            ),
        ]
        existing = [
            TransactionRecord(
                type="INCOME",
                amount=Decimal("3000"),
                currency="USD",
                category_id="salary",
                month="2024-02",
                recurring_template_id="salary",
            )
        ]

        projections = project_recurring_templates(
            templates,
            "2024-02",
            existing,
            "USD",
            self.rates,
            txn_type=TransactionType.INCOME,
        )

        expected = [
            ProjectedEntry(
                template_id="freelance",
                date=date(2024, 2, 29),
                amount=Decimal("800.00"),
                transaction_type="INCOME",
                description="Retainer",
            )
        ]
        self.assertEqual(projections, expected)

    def test_application_in_another_month_does_not_count(self) -> None:
        templates = [
            RecurringTemplate(template_id="salary", type="INCOME", amount=Decimal("3000"), currency="USD"),
        ]
        existing = [
            TransactionRecord(
                type="INCOME",
                amount=Decimal("3000"),
                currency="USD",
                category_id="salary",
                month="2024-01",
                recurring_template_id="salary",
            )
        ]

        projections = project_recurring_templates(templates, "2024-02", existing, "USD", self.rates)

        self.assertEqual(len(projections), 1)
        self.assertEqual(projections[0].date, date(2024, 2, 1))

    def test_rejects_unsupported_type(self) -> None:
        with self.assertRaises(ValueError):
            RecurringTemplate(template_id="x", type="investment", amount=Decimal("1"), currency="USD")


if __name__ == "__main__":
    unittest.main()
