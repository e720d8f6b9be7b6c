"""
Schedule Generator

Pure functions: installment splits, due-date sequences and loan
amortization. Nothing here touches the database.

CRITICAL: Installment amounts always sum to the purchase amount exactly.
The last installment absorbs the whole rounding remainder.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from envelope_ledger.engine.errors import InvalidRequest, ZeroOrNegativeAmount
from envelope_ledger.engine.periods import add_periods
from envelope_ledger.models.budget import AmortizationLine, InstallmentLine
from envelope_ledger.models.ledger import Frequency


_CENT = Decimal("1")


def split_installments(total_cents: int, n: int) -> list[int]:
    """
    Split total_cents into n installments.

    Example: split_installments(1000, 3) == [333, 333, 334]
    """
    if isinstance(total_cents, bool) or not isinstance(total_cents, int) or total_cents <= 0:
        raise ZeroOrNegativeAmount(
            "Installment total must be a positive number of cents",
            total_cents=total_cents,
        )
    if n < 2:
        raise InvalidRequest("An installment plan needs at least 2 installments", n=n)

    regular = total_cents // n
    last = total_cents - regular * (n - 1)
    return [regular] * (n - 1) + [last]


def due_dates(start_date: date, frequency: Frequency, n: int) -> list[date]:
    """start_date plus (i-1) periods for i in 1..n."""
    return [add_periods(start_date, frequency, i) for i in range(n)]


def installment_schedule(
    total_cents: int,
    n: int,
    frequency: Frequency,
    start_date: date,
) -> list[InstallmentLine]:
    amounts = split_installments(total_cents, n)
    return [
        InstallmentLine(installment_number=i, due_date=due, amount_cents=amount)
        for i, (due, amount) in enumerate(zip(due_dates(start_date, frequency, n), amounts), start=1)
    ]


def monthly_rate(annual_rate_percent: Union[Decimal, int, str]) -> Decimal:
    return Decimal(str(annual_rate_percent)) / Decimal(100) / Decimal(12)


def monthly_payment(
    principal_cents: int,
    annual_rate_percent: Union[Decimal, int, str],
    term_months: int,
) -> int:
    """
    Level monthly payment, rounded half-up to whole cents.

    payment = P * r * (1 + r)^n / ((1 + r)^n - 1); a zero rate
    degenerates to the regular installment of an even split.
    """
    if principal_cents <= 0:
        raise ZeroOrNegativeAmount("Loan principal must be positive", principal_cents=principal_cents)
    if term_months < 1:
        raise InvalidRequest("Loan term must be at least one month", term_months=term_months)

    r = monthly_rate(annual_rate_percent)
    if r < 0:
        raise InvalidRequest("Interest rate cannot be negative", annual_rate_percent=annual_rate_percent)
    if r == 0:
        return principal_cents // term_months

    growth = (1 + r) ** term_months
    payment = Decimal(principal_cents) * r * growth / (growth - 1)
    return int(payment.quantize(_CENT, rounding=ROUND_HALF_UP))


def amortization_schedule(
    principal_cents: int,
    annual_rate_percent: Union[Decimal, int, str],
    term_months: int,
    start_date: date,
) -> list[AmortizationLine]:
    """
    Full amortization table, one line per month.

    The remaining balance is floored at zero and the final period
    pays off whatever is left, so the table always ends at exactly 0.
    """
    payment = monthly_payment(principal_cents, annual_rate_percent, term_months)
    r = monthly_rate(annual_rate_percent)
    remaining = principal_cents
    lines = []

    for period in range(1, term_months + 1):
        interest = int((Decimal(remaining) * r).quantize(_CENT, rounding=ROUND_HALF_UP))
        if period == term_months:
            principal = remaining
        else:
            principal = min(max(payment - interest, 0), remaining)
        remaining -= principal
        lines.append(AmortizationLine(
            period=period,
            due_date=add_periods(start_date, Frequency.MONTHLY, period - 1),
            payment_cents=principal + interest,
            principal_cents=principal,
            interest_cents=interest,
            balance_cents=remaining,
        ))

    return lines
