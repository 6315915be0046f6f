"""Accounting reports built from a user's invoices.

The ``build_*`` functions are pure: they take loaded invoices and return
plain dicts. The ``get_*`` functions load invoices for a user and wrap any
failure in ReportError so callers get one generic message per report.
"""
import calendar
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from shared import Invoice
from services.accounting.insights import (
    assess_cash_flow_risk, assess_financial_risks, calculate_overall_risk_level,
    calculate_payment_probability, calculate_tax_liabilities, detect_fraud_issues,
    find_next_tax_due_date, generate_summary, invoice_date, risk_recommendations,
    tax_recommendations, validate_trial_balance, vendor_label,
)

logger = logging.getLogger(__name__)

PERIOD_MONTHS = {"month": 1, "quarter": 3, "year": 12}
CASH_FLOW_DAYS = {"30days": 30, "60days": 60, "90days": 90}

SEED_ACCOUNTS = [
    ("cash", "1000", "Cash", "asset"),
    ("accounts-receivable", "1100", "Accounts Receivable", "asset"),
    ("inventory", "1200", "Inventory", "asset"),
    ("accounts-payable", "2000", "Accounts Payable", "liability"),
    ("loans-payable", "2100", "Loans Payable", "liability"),
    ("owners-equity", "3000", "Owner's Equity", "equity"),
    ("revenue", "4000", "Revenue", "revenue"),
]


class ReportError(Exception):
    """A report could not be produced."""


def shift_months(day: date, months: int) -> date:
    """Move a date by whole months, clamping to the last day of the target month."""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _amount(invoice) -> float:
    return float(invoice.amount or 0)


def _category_name(invoice) -> Optional[str]:
    category = getattr(invoice, "category", None)
    return category.name if category is not None else None


def _active(invoices: List) -> List:
    """Archived (cancelled) invoices take no part in the books."""
    return [inv for inv in invoices if inv.status != "CANCELLED"]


def _percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0
    return round((current - previous) / abs(previous) * 100, 2)


def build_general_ledger(invoices: List) -> List[Dict[str, Any]]:
    """One ledger line per invoice, newest first, with a running balance.

    The balance accumulates credit minus debit starting from the oldest line,
    so the first entry carries the balance of the whole book.
    """
    ordered = sorted(
        _active(invoices),
        key=lambda inv: invoice_date(inv) or date.min,
        reverse=True,
    )

    entries = []
    for invoice in ordered:
        amount = _amount(invoice)
        is_payment = invoice.invoice_type == "PAYMENT"
        entry_date = invoice_date(invoice)
        entries.append({
            "id": str(invoice.invoice_id),
            "date": entry_date.isoformat() if entry_date else None,
            "description": invoice.title or ("Payment received" if is_payment else "Purchase made"),
            "reference": invoice.invoice_number or str(invoice.invoice_id)[:8],
            "account": "Accounts Receivable" if is_payment else "Accounts Payable",
            "counter_account": "Revenue" if is_payment else (_category_name(invoice) or "Expenses"),
            "debit": 0.0 if is_payment else amount,
            "credit": amount if is_payment else 0.0,
            "balance": 0.0,
            "entity": "Customer" if is_payment else vendor_label(invoice),
            "status": invoice.status,
        })

    balance = 0.0
    for entry in reversed(entries):
        balance += entry["credit"] - entry["debit"]
        entry["balance"] = round(balance, 2)

    return entries


def _sum_by_category(invoices: List):
    revenue: Dict[str, float] = {}
    expenses: Dict[str, float] = {}
    for invoice in invoices:
        amount = _amount(invoice)
        if invoice.invoice_type == "PAYMENT":
            name = _category_name(invoice) or "Uncategorized Revenue"
            revenue[name] = revenue.get(name, 0.0) + amount
        else:
            name = _category_name(invoice) or "Uncategorized Expenses"
            expenses[name] = expenses.get(name, 0.0) + amount
    return revenue, expenses


def build_profit_loss(invoices: List, period: str = "month", today: Optional[date] = None) -> Dict[str, Any]:
    """Revenue and expenses for the last 1/3/12 months against the window before."""
    if period not in PERIOD_MONTHS:
        raise ValueError(f"Unknown period: {period}")

    today = today or date.today()
    months = PERIOD_MONTHS[period]
    start = shift_months(today, -months)
    previous_start = shift_months(start, -months)

    active = [inv for inv in _active(invoices) if inv.issue_date]
    current = [inv for inv in active if start <= inv.issue_date <= today]
    previous = [inv for inv in active if previous_start <= inv.issue_date < start]

    revenue, expenses = _sum_by_category(current)
    total_revenue = sum(revenue.values())
    total_expenses = sum(expenses.values())
    net_income = total_revenue - total_expenses

    prev_revenue_map, prev_expense_map = _sum_by_category(previous)
    prev_revenue = sum(prev_revenue_map.values())
    prev_expenses = sum(prev_expense_map.values())
    prev_net_income = prev_revenue - prev_expenses

    monthly_data = []
    for i in range(months):
        month_start = shift_months(start, i)
        month_invoices = [
            inv for inv in current
            if inv.issue_date.year == month_start.year and inv.issue_date.month == month_start.month
        ]
        month_revenue = sum(_amount(inv) for inv in month_invoices if inv.invoice_type == "PAYMENT")
        month_expenses = sum(_amount(inv) for inv in month_invoices if inv.invoice_type != "PAYMENT")
        monthly_data.append({
            "month": f"{month_start:%b} {month_start.year}",
            "revenue": month_revenue,
            "expenses": month_expenses,
            "profit": month_revenue - month_expenses,
        })

    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "net_income": net_income,
        "revenue_categories": [{"name": k, "value": v} for k, v in revenue.items()],
        "expense_categories": [{"name": k, "value": v} for k, v in expenses.items()],
        "monthly_data": monthly_data,
        "period": period,
        "start_date": start.isoformat(),
        "end_date": today.isoformat(),
        "previous_period": {
            "total_revenue": prev_revenue,
            "total_expenses": prev_expenses,
            "net_income": prev_net_income,
            "start_date": previous_start.isoformat(),
            "end_date": start.isoformat(),
        },
        "changes": {
            "revenue": _percent_change(total_revenue, prev_revenue),
            "expenses": _percent_change(total_expenses, prev_expenses),
            "net_income": _percent_change(net_income, prev_net_income),
        },
    }


def _balance_sheet_totals(invoices: List) -> Dict[str, Any]:
    cash = 0.0
    receivable = 0.0
    payable = 0.0
    for invoice in invoices:
        amount = _amount(invoice)
        paid = invoice.status == "PAID"
        if invoice.invoice_type == "PAYMENT":
            if paid:
                cash += amount
            else:
                receivable += amount
        else:
            if paid:
                cash -= amount
            else:
                payable += amount

    # Inventory valuation, prepaid, fixed assets and debt are not tracked yet
    current_assets = cash + receivable
    fixed_assets = 0.0
    total_assets = current_assets + fixed_assets
    current_liabilities = payable
    long_term_liabilities = 0.0
    total_liabilities = current_liabilities + long_term_liabilities

    return {
        "assets": {
            "current_assets": {
                "cash": cash,
                "accounts_receivable": receivable,
                "inventory": 0.0,
                "prepaid_expenses": 0.0,
                "total": current_assets,
            },
            "fixed_assets": {
                "property_and_equipment": 0.0,
                "less_accumulated_depreciation": 0.0,
                "total": fixed_assets,
            },
            "total_assets": total_assets,
        },
        "liabilities": {
            "current_liabilities": {
                "accounts_payable": payable,
                "short_term_debt": 0.0,
                "total": current_liabilities,
            },
            "long_term_liabilities": {
                "long_term_debt": 0.0,
                "total": long_term_liabilities,
            },
            "total_liabilities": total_liabilities,
        },
        "equity": {
            "retained_earnings": 0.0,
            "owners_equity": total_assets - total_liabilities,
            "total_equity": total_assets - total_liabilities,
        },
    }


def build_balance_sheet(invoices: List, today: Optional[date] = None) -> Dict[str, Any]:
    """Position today against the position one month ago."""
    today = today or date.today()
    active = _active(invoices)
    one_month_ago = shift_months(today, -1)

    current = _balance_sheet_totals(active)
    previous = _balance_sheet_totals([
        inv for inv in active
        if invoice_date(inv) is not None and invoice_date(inv) < one_month_ago
    ])

    current["as_of_date"] = today.isoformat()
    current["previous_period"] = {
        "as_of_date": one_month_ago.isoformat(),
        "total_assets": previous["assets"]["total_assets"],
        "total_liabilities": previous["liabilities"]["total_liabilities"],
        "total_equity": previous["equity"]["total_equity"],
    }
    current["changes"] = {
        "total_assets": _percent_change(current["assets"]["total_assets"], previous["assets"]["total_assets"]),
        "total_liabilities": _percent_change(
            current["liabilities"]["total_liabilities"], previous["liabilities"]["total_liabilities"]
        ),
        "total_equity": _percent_change(current["equity"]["total_equity"], previous["equity"]["total_equity"]),
    }
    return current


def build_trial_balance(invoices: List, today: Optional[date] = None) -> Dict[str, Any]:
    """Post every invoice into a small chart of accounts and check the totals."""
    today = today or date.today()
    active = _active(invoices)

    accounts = [
        {"id": acc_id, "code": code, "name": name, "type": acc_type, "debit": 0.0, "credit": 0.0}
        for acc_id, code, name, acc_type in SEED_ACCOUNTS
    ]

    expense_accounts: Dict[str, Dict[str, Any]] = {}
    for invoice in active:
        if invoice.invoice_type == "PAYMENT":
            continue
        name = _category_name(invoice) or "Uncategorized"
        if name in expense_accounts:
            continue
        account_id = f"expense-{name.lower().replace(' ', '-')}"
        taken = {account["id"] for account in expense_accounts.values()}
        suffix = 2
        while account_id in taken:
            account_id = f"expense-{name.lower().replace(' ', '-')}-{suffix}"
            suffix += 1
        expense_accounts[name] = {
            "id": account_id,
            "code": str(5000 + len(expense_accounts) * 100),
            "name": name,
            "type": "expense",
            "debit": 0.0,
            "credit": 0.0,
        }
    accounts.extend(expense_accounts.values())

    by_id = {account["id"]: account for account in accounts}

    for invoice in active:
        amount = _amount(invoice)
        paid = invoice.status == "PAID"
        if invoice.invoice_type == "PAYMENT":
            by_id["cash" if paid else "accounts-receivable"]["debit"] += amount
            by_id["revenue"]["credit"] += amount
        else:
            expense_accounts[_category_name(invoice) or "Uncategorized"]["debit"] += amount
            by_id["cash" if paid else "accounts-payable"]["credit"] += amount

    total_debits = sum(account["debit"] for account in accounts)
    total_credits = sum(account["credit"] for account in accounts)

    return {
        "accounts": accounts,
        "total_debits": total_debits,
        "total_credits": total_credits,
        "difference": round(total_debits - total_credits, 2),
        "is_balanced": abs(total_debits - total_credits) < 0.01,
        "as_of_date": today.isoformat(),
        "validation": validate_trial_balance(accounts, total_debits, total_credits),
    }


def build_cash_flow_projection(invoices: List, period: str = "30days", today: Optional[date] = None) -> Dict[str, Any]:
    """Day-by-day projection of expected receipts and payments over the horizon."""
    if period not in CASH_FLOW_DAYS:
        raise ValueError(f"Unknown period: {period}")

    today = today or date.today()
    active = _active(invoices)

    current_balance = 0.0
    for invoice in active:
        if invoice.status == "PAID":
            current_balance += _amount(invoice) if invoice.invoice_type == "PAYMENT" else -_amount(invoice)

    outstanding = [inv for inv in active if inv.status != "PAID" and inv.due_date]

    predictions = []
    balance = current_balance
    for offset in range(CASH_FLOW_DAYS[period]):
        day = today + timedelta(days=offset)
        inflow = 0.0
        outflow = 0.0
        sources = []
        for invoice in outstanding:
            if invoice.due_date != day:
                continue
            amount = _amount(invoice)
            if invoice.invoice_type == "PAYMENT":
                probability = calculate_payment_probability(invoice, today)
                inflow += amount * probability
                sources.append({
                    "invoice_id": str(invoice.invoice_id),
                    "name": "Customer",
                    "amount": amount,
                    "probability": probability,
                    "type": "inflow",
                })
            else:
                outflow += amount
                sources.append({
                    "invoice_id": str(invoice.invoice_id),
                    "name": vendor_label(invoice),
                    "amount": amount,
                    "probability": 1.0,
                    "type": "outflow",
                })

        balance += inflow - outflow
        predictions.append({
            "date": day.isoformat(),
            "inflow": round(inflow, 2),
            "outflow": round(outflow, 2),
            "net": round(inflow - outflow, 2),
            "balance": round(balance, 2),
            "sources": sources,
        })

    balances = [p["balance"] for p in predictions]
    return {
        "period": period,
        "current_balance": current_balance,
        "predictions": predictions,
        "summary": {
            "projected_end_balance": balances[-1] if balances else current_balance,
            "lowest_balance": min([current_balance] + balances),
            "highest_balance": max([current_balance] + balances),
            "total_inflow": round(sum(p["inflow"] for p in predictions), 2),
            "total_outflow": round(sum(p["outflow"] for p in predictions), 2),
        },
        "risk_assessment": assess_cash_flow_risk(predictions, current_balance),
    }


def build_financial_insights(invoices: List, today: Optional[date] = None) -> Dict[str, Any]:
    """Fraud signals, business risks and tax estimates in one payload."""
    active = _active(invoices)
    fraud = detect_fraud_issues(active)
    risks = assess_financial_risks(active)
    liabilities = calculate_tax_liabilities(active, today)

    return {
        "fraud_detection": fraud,
        "financial_risks": risks,
        "overall_risk_level": calculate_overall_risk_level(risks),
        "risk_recommendations": risk_recommendations(risks),
        "tax_liabilities": liabilities,
        "total_tax_liability": round(sum(l["amount"] for l in liabilities), 2),
        "next_tax_due_date": find_next_tax_due_date(liabilities, today),
        "tax_recommendations": tax_recommendations(liabilities),
        "summary": generate_summary(active, fraud, risks, liabilities, today),
    }


def build_financial_summary(invoices: List, today: Optional[date] = None) -> Dict[str, Any]:
    """Dashboard totals: month-over-month, status buckets, due soon, top vendors."""
    today = today or date.today()
    month_start = today.replace(day=1)
    last_month_start = shift_months(month_start, -1)
    year_start = today.replace(month=1, day=1)
    week_ahead = today + timedelta(days=7)

    def total(items):
        return sum(_amount(inv) for inv in items)

    dated = [inv for inv in invoices if invoice_date(inv)]
    this_month = total(inv for inv in dated if invoice_date(inv) >= month_start)
    last_month = total(inv for inv in dated if last_month_start <= invoice_date(inv) < month_start)
    this_year = total(inv for inv in dated if invoice_date(inv) >= year_start)

    paid = [inv for inv in invoices if inv.status == "PAID"]
    pending = [inv for inv in invoices if inv.status == "PENDING"]
    overdue = [
        inv for inv in invoices
        if inv.status == "OVERDUE" or (inv.status == "PENDING" and inv.due_date and inv.due_date < today)
    ]
    due_soon = [
        inv for inv in invoices
        if inv.status in ("PENDING", "OVERDUE") and inv.due_date and today <= inv.due_date <= week_ahead
    ]

    vendors: Dict[str, Dict[str, Any]] = {}
    categories: Dict[str, Dict[str, Any]] = {}
    for invoice in invoices:
        if not invoice.amount:
            continue
        name = vendor_label(invoice)
        bucket = vendors.setdefault(name, {"name": name, "amount": 0.0, "count": 0})
        bucket["amount"] += _amount(invoice)
        bucket["count"] += 1

        category = getattr(invoice, "category", None)
        if category is not None:
            entry = categories.setdefault(
                category.name,
                {"name": category.name, "color": category.color or "#cccccc", "amount": 0.0, "count": 0},
            )
            entry["amount"] += _amount(invoice)
            entry["count"] += 1

    return {
        "overview": {
            "total_invoices": len(invoices),
            "total_amount": total(invoices),
            "this_month_amount": this_month,
            "last_month_amount": last_month,
            "this_year_amount": this_year,
            "month_over_month_change": (
                round((this_month - last_month) / last_month * 100, 2) if last_month else 0.0
            ),
        },
        "status": {
            "paid": {"count": len(paid), "amount": total(paid)},
            "pending": {"count": len(pending), "amount": total(pending)},
            "overdue": {"count": len(overdue), "amount": total(overdue)},
        },
        "upcoming": {
            "due_this_week": {
                "count": len(due_soon),
                "amount": total(due_soon),
                "invoices": [
                    {
                        "id": str(inv.invoice_id),
                        "invoice_number": inv.invoice_number,
                        "amount": inv.amount,
                        "due_date": inv.due_date.isoformat(),
                        "vendor_name": vendor_label(inv),
                    }
                    for inv in due_soon
                ],
            },
        },
        "top_vendors": sorted(vendors.values(), key=lambda v: v["amount"], reverse=True)[:5],
        "category_breakdown": sorted(categories.values(), key=lambda c: c["amount"], reverse=True),
    }


def load_invoices(db: Session, user_id: UUID) -> List[Invoice]:
    return (
        db.query(Invoice)
        .options(joinedload(Invoice.category), joinedload(Invoice.vendor))
        .filter(Invoice.user_id == user_id)
        .order_by(Invoice.issue_date.desc())
        .all()
    )


def _run_report(label: str, db: Session, user_id: UUID, builder, **kwargs) -> Any:
    try:
        return builder(load_invoices(db, user_id), **kwargs)
    except Exception as e:
        logger.error(f"Error building {label} for user {user_id}: {e}", exc_info=True)
        raise ReportError(f"Failed to fetch {label}") from e


def get_general_ledger(db: Session, user_id: UUID) -> List[Dict[str, Any]]:
    return _run_report("general ledger", db, user_id, build_general_ledger)


def get_profit_loss(db: Session, user_id: UUID, period: str = "month") -> Dict[str, Any]:
    return _run_report("profit and loss data", db, user_id, build_profit_loss, period=period)


def get_balance_sheet(db: Session, user_id: UUID) -> Dict[str, Any]:
    return _run_report("balance sheet data", db, user_id, build_balance_sheet)


def get_trial_balance(db: Session, user_id: UUID) -> Dict[str, Any]:
    return _run_report("trial balance data", db, user_id, build_trial_balance)


def get_cash_flow_projection(db: Session, user_id: UUID, period: str = "30days") -> Dict[str, Any]:
    return _run_report("cash flow projection", db, user_id, build_cash_flow_projection, period=period)


def get_financial_insights(db: Session, user_id: UUID) -> Dict[str, Any]:
    return _run_report("financial insights", db, user_id, build_financial_insights)


def get_financial_summary(db: Session, user_id: UUID) -> Dict[str, Any]:
    return _run_report("financial summary", db, user_id, build_financial_summary)
