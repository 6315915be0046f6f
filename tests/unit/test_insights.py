"""Unit tests for financial heuristics."""
import uuid
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from services.accounting.insights import (
    format_currency, calculate_payment_probability, calculate_volatility, assess_cash_flow_risk,
    validate_trial_balance, detect_fraud_issues, assess_financial_risks, calculate_tax_liabilities,
    find_next_tax_due_date, calculate_overall_risk_level,
)

TODAY = date(2025, 6, 15)


def make_invoice(amount, invoice_type="PURCHASE", status="PENDING", issue_date=TODAY,
                 due_date=None, vendor_name="Staples"):
    return SimpleNamespace(
        invoice_id=uuid.uuid4(), invoice_number=None, vendor_name=vendor_name, vendor=None,
        vendor_id=None, issue_date=issue_date, due_date=due_date, amount=amount,
        status=status, invoice_type=invoice_type, created_at=None,
    )


def prediction(day, balance, inflow=0.0, outflow=0.0):
    return {"date": day, "balance": balance, "inflow": inflow, "outflow": outflow}


class TestPaymentProbability:

    def test_baseline(self):
        invoice = make_invoice(100, due_date=TODAY + timedelta(days=30))
        assert calculate_payment_probability(invoice, TODAY) == pytest.approx(0.8)

    def test_due_soon(self):
        invoice = make_invoice(100, due_date=TODAY + timedelta(days=3))
        assert calculate_payment_probability(invoice, TODAY) == pytest.approx(0.7)

    def test_overdue_penalties_are_bounded(self):
        invoice = make_invoice(100, status="OVERDUE", due_date=TODAY - timedelta(days=200))
        assert calculate_payment_probability(invoice, TODAY) == pytest.approx(0.0, abs=1e-9)

    def test_reliable_vendor_bonus(self):
        invoice = make_invoice(100, due_date=TODAY + timedelta(days=30), vendor_name="Reliable Parts")
        assert calculate_payment_probability(invoice, TODAY) == pytest.approx(0.9)


class TestVolatility:

    @pytest.mark.parametrize("values", [[], [42.0], [0.0, 0.0], [-5.0, 5.0]])
    def test_degenerate_series(self, values):
        assert calculate_volatility(values) == 0.0

    def test_constant_series(self):
        assert calculate_volatility([10.0, 10.0, 10.0]) == 0.0

    def test_coefficient_of_variation(self):
        assert calculate_volatility([5.0, 15.0]) == pytest.approx(0.5)


class TestCashFlowRisk:

    def test_first_negative_day_is_reported(self):
        predictions = [
            prediction("2025-06-15", 100, inflow=10),
            prediction("2025-06-16", -50, outflow=150),
            prediction("2025-06-17", -80, outflow=30),
        ]
        risk = assess_cash_flow_risk(predictions, 100)

        assert risk["cash_shortage"] is True
        assert risk["shortage_date"] == "2025-06-16"
        assert risk["shortage_amount"] == 50
        assert risk["risk_level"] == "high"
        assert risk["recommendations"]

    def test_stable_balance_is_low_risk(self):
        predictions = [prediction(f"2025-06-{d}", 1000, inflow=10, outflow=5) for d in range(15, 20)]
        risk = assess_cash_flow_risk(predictions, 1000)

        assert risk["cash_shortage"] is False
        assert risk["risk_level"] == "low"
        assert risk["recommendations"] == []

    def test_low_balance_is_medium_risk(self):
        predictions = [prediction("2025-06-15", 100, inflow=5), prediction("2025-06-16", 100, inflow=5)]
        risk = assess_cash_flow_risk(predictions, 1000)
        assert risk["risk_level"] == "medium"


class TestTrialBalanceValidation:

    def test_unbalanced(self):
        result = validate_trial_balance([], 100.0, 90.0)

        assert result["is_valid"] is False
        assert result["issues"][0]["id"] == "balance-issue"
        assert "$10.00" in result["issues"][0]["message"]

    def test_unusual_sides(self):
        accounts = [
            {"id": "cash", "name": "Cash", "type": "asset", "debit": 0.0, "credit": 10.0},
            {"id": "revenue", "name": "Revenue", "type": "revenue", "debit": 10.0, "credit": 0.0},
        ]
        result = validate_trial_balance(accounts, 10.0, 10.0)

        assert [i["type"] for i in result["issues"]] == ["warning", "warning"]

    def test_clean(self):
        accounts = [{"id": "cash", "name": "Cash", "type": "asset", "debit": 10.0, "credit": 0.0}]
        assert validate_trial_balance(accounts, 10.0, 10.0) == {"is_valid": True, "issues": []}


class TestFraudDetection:

    def test_duplicate_within_a_week(self):
        invoices = [make_invoice(250, issue_date=TODAY), make_invoice(250, issue_date=TODAY - timedelta(days=3))]
        results = detect_fraud_issues(invoices)

        assert len(results) == 1
        assert results[0]["issue_type"] == "duplicate"
        assert results[0]["severity"] == "high"
        assert results[0]["confidence"] == 90

    def test_not_duplicate_when_far_apart(self):
        invoices = [make_invoice(250, issue_date=TODAY), make_invoice(250, issue_date=TODAY - timedelta(days=10))]
        assert detect_fraud_issues(invoices) == []

    def test_amount_anomaly(self):
        invoices = [
            make_invoice(100 + i, vendor_name=f"Vendor {i}", issue_date=TODAY - timedelta(days=i * 10))
            for i in range(20)
        ]
        invoices.append(make_invoice(100000, vendor_name="Outlier"))
        anomalies = [r for r in detect_fraud_issues(invoices) if r["issue_type"] == "anomaly"]

        assert len(anomalies) == 1
        assert anomalies[0]["amount"] == 100000
        assert anomalies[0]["confidence"] == 75


class TestRisksAndTaxes:

    def test_vendor_concentration_and_negative_cash_flow(self):
        invoices = [make_invoice(900, vendor_name="BigCo"), make_invoice(100, vendor_name="SmallCo")]
        risks = assess_financial_risks(invoices)
        categories = [r["category"] for r in risks]

        assert "Vendor Concentration" in categories
        assert "Cash Flow" in categories
        assert calculate_overall_risk_level(risks) == "high"

    def test_overdue_receivables(self):
        invoices = [
            make_invoice(500, "PAYMENT", "OVERDUE"),
            make_invoice(100, "PURCHASE", vendor_name="A"),
            make_invoice(100, "PURCHASE", vendor_name="B"),
            make_invoice(100, "PURCHASE", vendor_name="C"),
            make_invoice(100, "PURCHASE", vendor_name="D"),
        ]
        risks = assess_financial_risks(invoices)
        assert [r["category"] for r in risks] == ["Accounts Receivable"]

    def test_no_risks(self):
        assert calculate_overall_risk_level([]) == "low"

    def test_tax_rates_and_due_dates(self):
        invoices = [make_invoice(1000, "PAYMENT"), make_invoice(400, "PURCHASE")]
        liabilities = {l["id"]: l for l in calculate_tax_liabilities(invoices, TODAY)}

        assert liabilities["income-tax"]["amount"] == pytest.approx(126.0)
        assert liabilities["income-tax"]["due_date"] == "2025-12-31"
        assert liabilities["sales-tax"]["amount"] == pytest.approx(80.0)
        assert liabilities["sales-tax"]["due_date"] == "2025-06-30"
        assert liabilities["payroll-tax"]["amount"] == pytest.approx(60.0)
        assert liabilities["payroll-tax"]["due_date"] == "2025-06-30"

    def test_no_profit_no_income_tax(self):
        liabilities = calculate_tax_liabilities([make_invoice(400, "PURCHASE")], TODAY)
        assert [l["id"] for l in liabilities] == ["payroll-tax"]

    def test_next_due_date(self):
        liabilities = calculate_tax_liabilities([make_invoice(1000, "PAYMENT")], TODAY)
        assert find_next_tax_due_date(liabilities, TODAY) == "2025-06-30"
        assert find_next_tax_due_date([], TODAY) == (TODAY + timedelta(days=90)).isoformat()


def test_format_currency():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(-10) == "-$10.00"
