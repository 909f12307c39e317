# Overview: Pure tax/discount computation shared by invoice create, edit, preview and verification.

"""
Tax & Discount Calculator (authoritative)

Pure functions only: no database, no Flask, no exceptions for data that can
be computed. Negative totals (discount larger than subtotal) are returned as
computed; rejecting them is the caller's business.

Algorithm, for lines {quantity, unit_price, line_discount, tax_rate}:
1. line_subtotal = unit_price * quantity
   line_taxable  = line_subtotal - line_discount
   line_tax      = line_taxable * tax_rate / 100   (0 when include_tax is off)
2. subtotal = sum(line_subtotal); line_discount_total = sum(line_discount)
3. bill_discount = amount, or subtotal * percent / 100
4. taxable_after_bill_discount = subtotal - line_discount_total - bill_discount
5. tax_total = sum(line_tax)   (bill discount does NOT reduce the tax base)
6. pre_round_total = taxable_after_bill_discount + tax_total
7. total = round half away from zero to a whole unit; round_off = total - pre_round_total

Precision: line figures are exact Decimal arithmetic. subtotal,
line_discount_total, bill_discount and tax_total are rounded to storage
precision (4 places) before steps 4-7, so the persisted columns satisfy
    round_off == total - (subtotal - discount_total + tax_total)
exactly, not just up to the rounding of each column.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence, Union

from ..money import HUNDRED, ZERO, quantize_money


# =============================================================================
# Inputs
# =============================================================================

@dataclass(frozen=True)
class LineInput:
    quantity: Decimal
    unit_price: Decimal
    line_discount: Decimal = ZERO
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class AmountDiscount:
    """Bill-level discount as an absolute amount."""
    amount: Decimal
    kind = "amount"


@dataclass(frozen=True)
class PercentDiscount:
    """Bill-level discount as a percentage of the subtotal."""
    percent: Decimal
    kind = "percent"


@dataclass(frozen=True)
class NoDiscount:
    kind = None


NO_DISCOUNT = NoDiscount()

DiscountInput = Union[AmountDiscount, PercentDiscount, NoDiscount]


def resolve_discount(amount: Decimal | None, percent: Decimal | None) -> DiscountInput:
    """
    Turn the two legacy request fields into one DiscountInput.

    A non-zero amount always wins over a percent supplied alongside it.
    """
    if amount is not None and amount != ZERO:
        return AmountDiscount(amount)
    if percent is not None and percent != ZERO:
        return PercentDiscount(percent)
    return NO_DISCOUNT


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class LineResult:
    line_subtotal: Decimal
    line_discount: Decimal
    taxable_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class CartTotals:
    lines: tuple[LineResult, ...]
    subtotal: Decimal
    line_discount_total: Decimal
    bill_discount: Decimal
    taxable_after_bill_discount: Decimal
    tax_total: Decimal
    pre_round_total: Decimal
    total: Decimal
    round_off: Decimal
    include_tax: bool

    @property
    def discount_total(self) -> Decimal:
        """Line discounts plus the bill-level discount."""
        return self.line_discount_total + self.bill_discount

    def to_dict(self) -> dict:
        return {
            "subtotal": format(self.subtotal, "f"),
            "line_discount_total": format(self.line_discount_total, "f"),
            "bill_discount": format(self.bill_discount, "f"),
            "discount_total": format(self.discount_total, "f"),
            "taxable_after_bill_discount": format(self.taxable_after_bill_discount, "f"),
            "tax_total": format(self.tax_total, "f"),
            "pre_round_total": format(self.pre_round_total, "f"),
            "total": format(self.total, "f"),
            "round_off": format(self.round_off, "f"),
            "include_tax": self.include_tax,
        }


@dataclass(frozen=True)
class TaxBreakdownRow:
    tax_rate: Decimal
    taxable_amount: Decimal
    component_rate: Decimal
    central_tax: Decimal
    state_tax: Decimal

    @property
    def total_tax(self) -> Decimal:
        return self.central_tax + self.state_tax

    def to_dict(self) -> dict:
        return {
            "tax_rate": format(self.tax_rate, "f"),
            "taxable_amount": format(self.taxable_amount, "f"),
            "component_rate": format(self.component_rate, "f"),
            "central_tax": format(self.central_tax, "f"),
            "state_tax": format(self.state_tax, "f"),
            "total_tax": format(self.total_tax, "f"),
        }


# =============================================================================
# Computation
# =============================================================================

def round_half_away_from_zero(value: Decimal) -> Decimal:
    # Decimal's ROUND_HALF_UP rounds ties away from zero for negatives too.
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def compute_line(line: LineInput, include_tax: bool = True) -> LineResult:
    line_subtotal = line.unit_price * line.quantity
    taxable = line_subtotal - line.line_discount
    tax = taxable * line.tax_rate / HUNDRED if include_tax else ZERO
    return LineResult(
        line_subtotal=line_subtotal,
        line_discount=line.line_discount,
        taxable_amount=taxable,
        tax_rate=line.tax_rate,
        tax_amount=tax,
        line_total=taxable + tax,
    )


def bill_discount_amount(subtotal: Decimal, discount: DiscountInput) -> Decimal:
    if isinstance(discount, AmountDiscount):
        return discount.amount
    if isinstance(discount, PercentDiscount):
        return subtotal * discount.percent / HUNDRED
    return ZERO


def calculate_totals(
    lines: Sequence[LineInput],
    discount: DiscountInput = NO_DISCOUNT,
    include_tax: bool = True,
) -> CartTotals:
    """
    Compute every monetary figure of a cart.

    An empty sequence yields all-zero totals; whether an empty cart is
    acceptable is decided by the caller.
    """
    results = tuple(compute_line(line, include_tax) for line in lines)

    subtotal = quantize_money(sum((r.line_subtotal for r in results), ZERO))
    line_discount_total = quantize_money(sum((r.line_discount for r in results), ZERO))
    tax_total = quantize_money(sum((r.tax_amount for r in results), ZERO))

    bill_discount = quantize_money(bill_discount_amount(subtotal, discount))
    taxable_after_bill_discount = subtotal - line_discount_total - bill_discount
    pre_round_total = taxable_after_bill_discount + tax_total

    total = round_half_away_from_zero(pre_round_total)

    return CartTotals(
        lines=results,
        subtotal=subtotal,
        line_discount_total=line_discount_total,
        bill_discount=bill_discount,
        taxable_after_bill_discount=taxable_after_bill_discount,
        tax_total=tax_total,
        pre_round_total=pre_round_total,
        total=total,
        round_off=total - pre_round_total,
        include_tax=include_tax,
    )


def tax_breakdown(results: Iterable[LineResult], include_tax: bool = True) -> list[TaxBreakdownRow]:
    """
    Per-rate split for regulatory display, highest rate first.

    Each positive rate is reported as two equal components of rate/2 on the
    taxable amount at that rate; rate 0 (or tax excluded) reports zero tax.
    """
    taxable_by_rate: dict[Decimal, Decimal] = {}
    for r in results:
        taxable_by_rate[r.tax_rate] = taxable_by_rate.get(r.tax_rate, ZERO) + r.taxable_amount

    rows = []
    for rate in sorted(taxable_by_rate, reverse=True):
        taxable = taxable_by_rate[rate]
        if rate > ZERO and include_tax:
            half_rate = rate / 2
            component = taxable * half_rate / HUNDRED
            rows.append(TaxBreakdownRow(rate, taxable, half_rate, component, component))
        else:
            rows.append(TaxBreakdownRow(rate, taxable, ZERO, ZERO, ZERO))
    return rows
