"""Heuristic financial insights: payment likelihood, cash-flow risk, books
validation, fraud signals, business risks and tax estimates.

Everything here works on already-loaded invoices and returns plain dicts so
the API layer can hand the results straight to the client.
"""
import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

INCOME_TAX_RATE = 0.21
SALES_TAX_RATE = 0.08
PAYROLL_TAX_RATE = 0.15


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def vendor_label(invoice, default: str = "Unknown Vendor") -> str:
    vendor = getattr(invoice, "vendor", None)
    if vendor is not None and vendor.name:
        return vendor.name
    return invoice.vendor_name or default


def invoice_date(invoice) -> Optional[date]:
    """Issue date, falling back to when the record was created."""
    if invoice.issue_date:
        return invoice.issue_date
    created = getattr(invoice, "created_at", None)
    if isinstance(created, datetime):
        return created.date()
    return created


def calculate_payment_probability(invoice, today: Optional[date] = None) -> float:
    """Estimate how likely an outstanding invoice is to be paid, in [0, 1]."""
    today = today or date.today()
    probability = 0.8

    if invoice.status == "OVERDUE":
        probability -= 0.3

    if invoice.due_date:
        days_until_due = (invoice.due_date - today).days
        if days_until_due < 0:
            probability -= min(0.5, abs(days_until_due) * 0.01)
        elif days_until_due < 7:
            probability -= 0.1

    if "reliable" in vendor_label(invoice, "").lower():
        probability += 0.1

    return max(0.0, min(1.0, probability))


def calculate_volatility(values: List[float]) -> float:
    """Coefficient of variation of a series; 0 for short or zero-mean series."""
    if len(values) <= 1:
        return 0.0
    series = pd.Series(values, dtype=float)
    mean = series.mean()
    if mean == 0:
        return 0.0
    return float(series.std(ddof=0) / abs(mean))


def assess_cash_flow_risk(predictions: List[Dict[str, Any]], current_balance: float) -> Dict[str, Any]:
    """Risk level and advice for a daily cash-flow projection."""
    result = {
        "cash_shortage": False,
        "shortage_date": None,
        "shortage_amount": None,
        "risk_level": "low",
        "volatility": 0.0,
        "recommendations": [],
    }

    for prediction in predictions:
        if prediction["balance"] < 0:
            result["cash_shortage"] = True
            result["shortage_date"] = prediction["date"]
            result["shortage_amount"] = abs(prediction["balance"])
            break

    balances = [p["balance"] for p in predictions]
    volatility = calculate_volatility(balances)
    result["volatility"] = round(volatility, 4)

    if result["cash_shortage"]:
        result["risk_level"] = "high"
    elif balances and (volatility > 0.3 or min(balances) < current_balance * 0.2):
        result["risk_level"] = "medium"

    recommendations = result["recommendations"]
    if result["cash_shortage"]:
        recommendations.append(
            f"Prepare for a cash shortage of {format_currency(result['shortage_amount'])} "
            f"on {result['shortage_date']}."
        )
        recommendations.append("Consider securing a line of credit or delaying non-essential expenses.")
        recommendations.append("Follow up on outstanding receivables to improve cash flow.")

    if volatility > 0.3:
        recommendations.append(
            "Your cash flow shows high volatility. Consider implementing more consistent billing cycles."
        )

    if any(p["inflow"] == 0 for p in predictions):
        recommendations.append(
            "There are periods with no projected income. Diversify revenue streams to ensure more consistent cash flow."
        )

    if any(p["outflow"] > p["inflow"] * 1.5 for p in predictions):
        recommendations.append(
            "Some periods show significantly higher expenses than income. Review and potentially reschedule large expenses."
        )

    return result


def validate_trial_balance(accounts: List[Dict[str, Any]], total_debits: float, total_credits: float) -> Dict[str, Any]:
    """Flag an unbalanced book and accounts sitting on their unusual side."""
    issues = []

    if abs(total_debits - total_credits) >= 0.01:
        issues.append({
            "id": "balance-issue",
            "type": "error",
            "message": (
                f"Trial balance is not balanced. Difference: "
                f"{format_currency(abs(total_debits - total_credits))}"
            ),
            "suggestion": "Review all journal entries for errors or missing transactions.",
        })

    for account in accounts:
        debit, credit = account["debit"], account["credit"]
        account_type = account["type"]

        if account_type == "asset" and credit > debit:
            issues.append({
                "id": f"asset-{account['id']}",
                "type": "warning",
                "message": f"Asset account {account['name']} has a credit balance, which is unusual.",
                "account_id": account["id"],
                "suggestion": "Verify that all transactions are correctly recorded.",
            })
        elif account_type in ("liability", "equity") and debit > credit:
            issues.append({
                "id": f"{account_type}-{account['id']}",
                "type": "warning",
                "message": f"{account_type.capitalize()} account {account['name']} has a debit balance, which is unusual.",
                "account_id": account["id"],
                "suggestion": "Check for errors in recording transactions.",
            })
        elif account_type == "revenue" and debit > credit:
            issues.append({
                "id": f"revenue-{account['id']}",
                "type": "warning",
                "message": f"Revenue account {account['name']} has a debit balance, which is unusual.",
                "account_id": account["id"],
                "suggestion": "Check for returns or adjustments that may have been recorded incorrectly.",
            })
        elif account_type == "expense" and credit > debit:
            issues.append({
                "id": f"expense-{account['id']}",
                "type": "warning",
                "message": f"Expense account {account['name']} has a credit balance, which is unusual.",
                "account_id": account["id"],
                "suggestion": "Verify that expense refunds or adjustments are correctly recorded.",
            })

    return {"is_valid": not issues, "issues": issues}


def detect_fraud_issues(invoices: List) -> List[Dict[str, Any]]:
    """Possible duplicates (same amount and vendor within a week) and amount outliers."""
    results = []

    groups: Dict[str, List] = {}
    for invoice in invoices:
        key = f"{invoice.amount}-{invoice.vendor_id or vendor_label(invoice, 'unknown')}"
        groups.setdefault(key, []).append(invoice)

    for group in groups.values():
        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                first, second = group[i], group[j]
                first_date, second_date = invoice_date(first), invoice_date(second)
                if first_date is None or second_date is None:
                    continue
                days_apart = abs((first_date - second_date).days)
                if days_apart < 7:
                    results.append({
                        "id": f"duplicate-{first.invoice_id}-{second.invoice_id}",
                        "invoice_id": str(first.invoice_id),
                        "vendor_name": vendor_label(first),
                        "amount": float(first.amount or 0),
                        "date": first_date.isoformat(),
                        "issue_type": "duplicate",
                        "severity": "high",
                        "description": (
                            f"Potential duplicate invoice detected. Invoice "
                            f"{first.invoice_number or first.invoice_id} and "
                            f"{second.invoice_number or second.invoice_id} have the same amount and vendor, "
                            f"and are only {days_apart} days apart."
                        ),
                        "confidence": 90,
                        "suggested_action": "Review both invoices to confirm they are for different purchases/services.",
                    })

    amounts = [float(inv.amount or 0) for inv in invoices]
    if len(amounts) > 1:
        series = pd.Series(amounts, dtype=float)
        mean = series.mean()
        std_dev = series.std(ddof=0)
        if std_dev > 0:
            for invoice, amount in zip(invoices, amounts):
                z_score = abs((amount - mean) / std_dev)
                if z_score > 3:
                    found_on = invoice_date(invoice)
                    results.append({
                        "id": f"anomaly-{invoice.invoice_id}",
                        "invoice_id": str(invoice.invoice_id),
                        "vendor_name": vendor_label(invoice),
                        "amount": amount,
                        "date": found_on.isoformat() if found_on else None,
                        "issue_type": "anomaly",
                        "severity": "medium",
                        "description": (
                            f"Unusually {'high' if amount > mean else 'low'} invoice amount detected. "
                            f"This amount is {z_score:.1f} standard deviations from the mean."
                        ),
                        "confidence": 75,
                        "suggested_action": "Verify this invoice amount is correct and authorized.",
                    })

    return results


def assess_financial_risks(invoices: List) -> List[Dict[str, Any]]:
    """Vendor concentration, negative net cash flow and overdue receivables."""
    risks = []

    vendor_totals: Dict[str, float] = {}
    vendor_names: Dict[str, str] = {}
    total_spend = 0.0
    for invoice in invoices:
        if invoice.invoice_type != "PURCHASE":
            continue
        amount = float(invoice.amount or 0)
        total_spend += amount
        key = str(invoice.vendor_id or vendor_label(invoice, "unknown"))
        vendor_totals[key] = vendor_totals.get(key, 0.0) + amount
        vendor_names[key] = vendor_label(invoice, "Unknown vendor")

    if total_spend > 0:
        for key, amount in vendor_totals.items():
            percentage = amount / total_spend * 100
            if percentage > 25:
                risks.append({
                    "id": f"vendor-concentration-{key}",
                    "category": "Vendor Concentration",
                    "description": f"{vendor_names[key]} accounts for {percentage:.1f}% of total expenses.",
                    "impact": "medium",
                    "probability": "high",
                    "mitigation": "Consider diversifying suppliers to reduce dependency on a single vendor.",
                })

    net_cash_flow = sum(
        float(inv.amount or 0) if inv.invoice_type == "PAYMENT" else -float(inv.amount or 0)
        for inv in invoices
    )
    if net_cash_flow < 0:
        risks.append({
            "id": "negative-cash-flow",
            "category": "Cash Flow",
            "description": "Negative overall cash flow detected.",
            "impact": "high",
            "probability": "high",
            "mitigation": "Review expenses and consider strategies to increase revenue or reduce costs.",
        })

    overdue = [inv for inv in invoices if inv.invoice_type == "PAYMENT" and inv.status == "OVERDUE"]
    overdue_total = sum(float(inv.amount or 0) for inv in overdue)
    if overdue_total > 0:
        risks.append({
            "id": "overdue-receivables",
            "category": "Accounts Receivable",
            "description": f"{len(overdue)} overdue invoices totaling {format_currency(overdue_total)}.",
            "impact": "medium",
            "probability": "medium",
            "mitigation": "Implement more aggressive collection procedures and consider early payment incentives.",
        })

    return risks


def _quarter_end(today: date) -> date:
    last_month = (today.month - 1) // 3 * 3 + 3
    return date(today.year, last_month, calendar.monthrange(today.year, last_month)[1])


def calculate_tax_liabilities(invoices: List, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Rough income, sales and payroll tax estimates with their next due dates."""
    today = today or date.today()
    liabilities = []

    total_revenue = sum(float(inv.amount or 0) for inv in invoices if inv.invoice_type == "PAYMENT")
    total_expenses = sum(float(inv.amount or 0) for inv in invoices if inv.invoice_type == "PURCHASE")

    estimated_profit = total_revenue - total_expenses
    income_tax = estimated_profit * INCOME_TAX_RATE if estimated_profit > 0 else 0.0
    if income_tax > 0:
        liabilities.append({
            "id": "income-tax",
            "tax_type": "Corporate Income Tax",
            "amount": round(income_tax, 2),
            "due_date": date(today.year, 12, 31).isoformat(),
            "status": "upcoming",
            "description": "Estimated corporate income tax based on current profit.",
        })

    sales_tax = total_revenue * SALES_TAX_RATE
    if sales_tax > 0:
        quarter_end = _quarter_end(today)
        liabilities.append({
            "id": "sales-tax",
            "tax_type": "Sales Tax",
            "amount": round(sales_tax, 2),
            "due_date": quarter_end.isoformat(),
            "status": "overdue" if today > quarter_end else "upcoming",
            "description": "Estimated sales tax based on current revenue.",
        })

    payroll_tax = total_expenses * PAYROLL_TAX_RATE
    if payroll_tax > 0:
        month_end = date(today.year, today.month, calendar.monthrange(today.year, today.month)[1])
        liabilities.append({
            "id": "payroll-tax",
            "tax_type": "Payroll Tax",
            "amount": round(payroll_tax, 2),
            "due_date": month_end.isoformat(),
            "status": "overdue" if today > month_end else "upcoming",
            "description": "Estimated payroll tax based on current expenses.",
        })

    return liabilities


def find_next_tax_due_date(liabilities: List[Dict[str, Any]], today: Optional[date] = None) -> str:
    upcoming = sorted(l["due_date"] for l in liabilities if l["status"] == "upcoming")
    if upcoming:
        return upcoming[0]
    today = today or date.today()
    return (today + timedelta(days=90)).isoformat()


def calculate_overall_risk_level(risks: List[Dict[str, Any]]) -> str:
    if not risks:
        return "low"
    if any(r["impact"] == "high" for r in risks):
        return "high"
    if sum(1 for r in risks if r["impact"] == "medium") > 1:
        return "medium"
    return "low"


def risk_recommendations(risks: List[Dict[str, Any]]) -> List[str]:
    recommendations = [risk["mitigation"] for risk in risks]
    if risks:
        recommendations.append("Regularly review financial statements to identify and address emerging risks.")
    if any(r["category"] == "Cash Flow" for r in risks):
        recommendations.append(
            "Implement a cash flow forecasting system to anticipate and prepare for potential shortfalls."
        )
    if any(r["category"] == "Accounts Receivable" for r in risks):
        recommendations.append(
            "Review credit policies and consider implementing stricter terms for customers with poor payment history."
        )
    return recommendations


def tax_recommendations(liabilities: List[Dict[str, Any]]) -> List[str]:
    recommendations = []
    if any(l["status"] == "overdue" for l in liabilities):
        recommendations.append("Address overdue tax liabilities immediately to avoid penalties and interest.")
    recommendations.append("Maintain accurate records of all business transactions to ensure proper tax reporting.")
    recommendations.append("Consider quarterly tax planning to optimize tax positions and avoid surprises.")

    tax_types = {l["tax_type"] for l in liabilities}
    if "Corporate Income Tax" in tax_types:
        recommendations.append("Review potential tax deductions and credits to minimize corporate income tax liability.")
    if "Sales Tax" in tax_types:
        recommendations.append("Ensure sales tax is properly collected and reported for all applicable transactions.")
    if "Payroll Tax" in tax_types:
        recommendations.append("Verify all employee classifications and payroll tax calculations to ensure compliance.")
    return recommendations


def generate_summary(
    invoices: List,
    fraud_results: List[Dict[str, Any]],
    risks: List[Dict[str, Any]],
    liabilities: List[Dict[str, Any]],
    today: Optional[date] = None,
) -> str:
    """Plain-text narrative of the numbers above."""
    total_revenue = sum(float(inv.amount or 0) for inv in invoices if inv.invoice_type == "PAYMENT")
    total_expenses = sum(float(inv.amount or 0) for inv in invoices if inv.invoice_type == "PURCHASE")
    net_income = total_revenue - total_expenses
    overdue_receivables = sum(
        float(inv.amount or 0) for inv in invoices
        if inv.invoice_type == "PAYMENT" and inv.status == "OVERDUE"
    )
    pending_payables = sum(
        float(inv.amount or 0) for inv in invoices
        if inv.invoice_type == "PURCHASE" and inv.status == "PENDING"
    )

    lines = ["Financial Summary:", ""]
    lines.append(
        f"Your business has generated {format_currency(total_revenue)} in revenue and incurred "
        f"{format_currency(total_expenses)} in expenses, resulting in a "
        f"{'profit' if net_income >= 0 else 'loss'} of {format_currency(abs(net_income))}."
    )
    if overdue_receivables > 0:
        lines.append(f"You have {format_currency(overdue_receivables)} in overdue receivables that require attention.")
    if pending_payables > 0:
        lines.append(f"You have {format_currency(pending_payables)} in pending payables to manage.")

    if fraud_results:
        impact = sum(r["amount"] for r in fraud_results)
        lines.append(
            f"Analysis has identified {len(fraud_results)} potential fraud issues that should be reviewed, "
            f"with a potential impact of {format_currency(impact)}."
        )
    else:
        lines.append("No potential fraud issues were detected in your financial data.")

    if risks:
        level = calculate_overall_risk_level(risks)
        categories = ", ".join(r["category"].lower() for r in risks)
        lines.append(f"Your overall financial risk level is {level.upper()}. Key risks include {categories}.")
    else:
        lines.append("No significant financial risks were identified at this time.")

    total_tax = sum(l["amount"] for l in liabilities)
    lines.append(
        f"You have an estimated {format_currency(total_tax)} in tax liabilities, with the next payment "
        f"due on {find_next_tax_due_date(liabilities, today)}."
    )

    lines.append("")
    lines.append("Key Recommendations:")
    if net_income < 0:
        lines.append("1. Focus on increasing revenue or reducing expenses to improve profitability.")
    else:
        lines.append("1. Continue your current revenue and expense management strategies.")
    if overdue_receivables > 0:
        lines.append("2. Implement more aggressive collection procedures for overdue receivables.")
    if fraud_results:
        lines.append("3. Review the identified potential fraud issues to prevent financial losses.")
    if any(r["impact"] == "high" for r in risks):
        lines.append("4. Address high-impact financial risks immediately to protect your business.")

    return "\n".join(lines)
