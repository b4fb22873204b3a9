import threading
import unittest
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient

from fintrack import main
from fintrack.currency_conversion import StaticRateProvider


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        provider = StaticRateProvider(rates={"USD": Decimal("1"), "EUR": Decimal("0.5")})
        patcher = patch.object(main, "FX_PROVIDER", provider)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(main.app)

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_dashboard(self) -> None:
        payload = {
            "account_id": "acc",
            "month": "2024-02",
            "preferred_currency": "USD",
            "transactions": [
                {"type": "INCOME", "amount": "3000", "currency": "USD", "category_id": "salary", "month": "2024-02"},
                {"type": "EXPENSE", "amount": "25", "currency": "EUR", "category_id": "utilities", "month": "2024-02"},
            ],
            "previous_transactions": [
                {"type": "INCOME", "amount": "100", "currency": "EUR", "category_id": "salary", "month": "2024-01"},
            ],
            "budgets": [
                {
                    "budget_id": "b1",
                    "account_id": "acc",
                    "category_id": "utilities",
                    "category_type": "EXPENSE",
                    "planned": "100",
                    "currency": "EUR",
                    "month": "2024-02",
                    "category_name": "Utilities",
                }
            ],
            "owed_to_me": [{"counterparty_id": "bob", "currency": "USD", "amount": "12.5"}],
            "holdings": [
                {"holding_id": "h1", "symbol": "aapl", "quantity": "2", "average_cost": "100", "currency": "USD"}
            ],
            "quotes": {"aapl": {"price": "110"}},
            "rates": {"2024-01": {"rates": {"EUR": "0.25"}}},
        }

        response = self.client.post("/dashboard", json=payload)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["month"], "2024-02")
        self.assertEqual(Decimal(str(body["actual_expense"])), Decimal("50"))
        self.assertEqual(Decimal(str(body["planned_expense"])), Decimal("200"))
        self.assertEqual(Decimal(str(body["projected_net"])), Decimal("2800"))
        self.assertEqual(Decimal(str(body["comparison"]["previous_net"])), Decimal("400"))
        self.assertEqual(
            [stat["breakdown"]["type"] for stat in body["stats"]],
            ["net-this-month", "on-track-for", "left-to-spend", "monthly-target"],
        )
        self.assertEqual(body["stats"][2]["breakdown"]["categories"][0]["name"], "Utilities")
        self.assertEqual(len(body["history"]), 6)
        self.assertEqual(body["highlighted_budgets"][0]["budget_id"], "b1")
        self.assertEqual(Decimal(str(body["highlighted_budgets"][0]["progress"])), Decimal("0.25"))
        self.assertEqual(Decimal(str(body["settlement_balances"][0]["net_balance"])), Decimal("12.5"))
        self.assertEqual(Decimal(str(body["holdings"][0]["market_value"])), Decimal("220"))
        self.assertEqual(body["income_source"], "none")

    def test_dashboard_fetches_missing_rate_months_concurrently(self) -> None:
        # 2023-09..2024-02 minus the supplied January snapshot.
        barrier = threading.Barrier(5, timeout=5)

        class RendezvousProvider:
            def build_rate_cache(self, month):
                barrier.wait()
                return StaticRateProvider().build_rate_cache(month)

        with patch.object(main, "FX_PROVIDER", RendezvousProvider()):
            response = self.client.post(
                "/dashboard",
                json={
                    "account_id": "acc",
                    "month": "2024-02",
                    "rates": {"2024-01": {"rates": {"EUR": "0.25"}}},
                },
            )

        self.assertEqual(response.status_code, 200)

    def test_dashboard_rejects_bad_month(self) -> None:
        response = self.client.post("/dashboard", json={"account_id": "acc", "month": "Feb"})

        self.assertEqual(response.status_code, 400)

    def test_dashboard_rejects_broken_rates(self) -> None:
        payload = {
            "account_id": "acc",
            "month": "2024-02",
            "preferred_currency": "USD",
            "transactions": [
                {"type": "EXPENSE", "amount": "25", "currency": "EUR", "category_id": "x", "month": "2024-02"},
            ],
            "rates": {"2024-02": {"rates": {"EUR": "0"}}},
        }

        response = self.client.post("/dashboard", json=payload)

        self.assertEqual(response.status_code, 422)

    def test_equal_split(self) -> None:
        response = self.client.post(
            "/expenses/shares",
            json={
                "split_type": "equal",
                "total_amount": "100",
                "participants": [{"email": "A@example.com"}, {"email": "b@example.com"}],
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["split_type"], "EQUAL")
        self.assertEqual(sorted(body["shares"]), ["a@example.com", "b@example.com"])
        self.assertEqual(Decimal(str(body["shares"]["a@example.com"]["amount"])), Decimal("33.33"))
        self.assertEqual(Decimal(str(body["owner_share"])), Decimal("33.34"))

    def test_invalid_split_is_bad_request(self) -> None:
        response = self.client.post(
            "/expenses/shares",
            json={
                "split_type": "PERCENTAGE",
                "total_amount": "100",
                "participants": [
                    {"email": "a@example.com", "share_percentage": "70"},
                    {"email": "b@example.com", "share_percentage": "40"},
                ],
            },
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("cannot exceed 100%", response.json()["detail"])

    def test_settlements(self) -> None:
        response = self.client.post(
            "/settlements",
            json={
                "owed_to_me": [{"counterparty_id": "bob", "currency": "USD", "amount": "60"}],
                "i_owe": [{"counterparty_id": "bob", "currency": "USD", "amount": "80"}],
            },
        )

        self.assertEqual(response.status_code, 200)
        [balance] = response.json()
        self.assertEqual(Decimal(str(balance["net_balance"])), Decimal("-20"))

    def test_shared_expense_summary_filter(self) -> None:
        expenses = [
            {
                "expense_id": "open",
                "total_amount": "90",
                "currency": "USD",
                "split_type": "EQUAL",
                "participants": [{"participant_id": "p1", "share_amount": "30"}],
            },
            {
                "expense_id": "done",
                "total_amount": "90",
                "currency": "USD",
                "split_type": "EQUAL",
                "participants": [{"participant_id": "p1", "share_amount": "30", "status": "PAID"}],
            },
        ]

        pending = self.client.post("/shared-expenses/summary?status=pending", json=expenses)
        invalid = self.client.post("/shared-expenses/summary?status=archived", json=expenses)

        self.assertEqual(pending.status_code, 200)
        self.assertEqual([row["expense_id"] for row in pending.json()], ["open"])
        self.assertEqual(Decimal(str(pending.json()[0]["owner_share"])), Decimal("60"))
        self.assertEqual(invalid.status_code, 400)


if __name__ == "__main__":
    unittest.main()
