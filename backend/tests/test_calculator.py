# Overview: Pytest coverage for the pure tax/discount calculator.

from decimal import Decimal

from shopbill.services.calculator import (
    AmountDiscount,
    LineInput,
    NO_DISCOUNT,
    PercentDiscount,
    calculate_totals,
    compute_line,
    resolve_discount,
    round_half_away_from_zero,
    tax_breakdown,
)


D = Decimal


def line(quantity, price, discount="0", rate="0"):
    return LineInput(quantity=D(quantity), unit_price=D(price), line_discount=D(discount), tax_rate=D(rate))


class TestTotals:
    def test_worked_example(self):
        """2 x 100.00 at 18% with a 20.00 bill discount -> 216, no round-off."""
        totals = calculate_totals([line("2", "100", rate="18")], AmountDiscount(D("20")))

        assert totals.subtotal == D("200")
        assert totals.discount_total == D("20")
        assert totals.taxable_after_bill_discount == D("180")
        assert totals.tax_total == D("36")
        assert totals.total == D("216")
        assert totals.round_off == D("0")

    def test_bill_discount_does_not_reduce_tax_base(self):
        totals = calculate_totals([line("1", "100", rate="10")], AmountDiscount(D("50")))
        assert totals.tax_total == D("10")
        assert totals.total == D("60")

    def test_line_discount_reduces_tax_base(self):
        totals = calculate_totals([line("1", "100", discount="10", rate="10")])
        assert totals.lines[0].taxable_amount == D("90")
        assert totals.tax_total == D("9")
        assert totals.total == D("99")
        assert totals.discount_total == D("10")

    def test_percent_discount_and_round_off(self):
        totals = calculate_totals([line("3", "33.33")], PercentDiscount(D("10")))

        assert totals.subtotal == D("99.99")
        assert totals.bill_discount == D("9.999")
        assert totals.pre_round_total == D("89.991")
        assert totals.total == D("90")
        assert totals.round_off == D("0.009")

    def test_round_off_identity(self):
        totals = calculate_totals(
            [line("1.250", "19.99", rate="12"), line("3", "7.4", discount="1.5", rate="5")],
            PercentDiscount(D("2.5")),
        )
        assert totals.total == totals.pre_round_total + totals.round_off
        assert totals.total == totals.total.to_integral_value()
        assert abs(totals.round_off) <= D("0.5")

    def test_tax_excluded(self):
        totals = calculate_totals([line("2", "100", rate="18")], include_tax=False)
        assert totals.tax_total == D("0")
        assert totals.total == D("200")
        assert totals.include_tax is False

    def test_empty_cart_is_all_zero(self):
        totals = calculate_totals([])
        assert totals.subtotal == D("0")
        assert totals.total == D("0")
        assert totals.round_off == D("0")
        assert totals.lines == ()

    def test_negative_total_is_returned_not_raised(self):
        totals = calculate_totals([line("1", "100")], AmountDiscount(D("500")))
        assert totals.total == D("-400")

    def test_exact_decimal_arithmetic(self):
        totals = calculate_totals([line("3", "0.1")])
        assert totals.subtotal == D("0.3")

    def test_to_dict_renders_plain_strings(self):
        data = calculate_totals([line("2", "100", rate="18")], AmountDiscount(D("20"))).to_dict()
        assert data["total"] == "216"
        assert data["discount_total"] == "20.0000"
        assert "E" not in data["tax_total"]


class TestDiscountInput:
    def test_amount_wins_over_percent(self):
        discount = resolve_discount(D("10"), D("50"))
        assert discount == AmountDiscount(D("10"))

        totals = calculate_totals([line("1", "100")], discount)
        assert totals.bill_discount == D("10")
        assert totals.total == D("90")

    def test_zero_amount_falls_back_to_percent(self):
        assert resolve_discount(D("0"), D("5")) == PercentDiscount(D("5"))

    def test_nothing_given(self):
        assert resolve_discount(None, None) is NO_DISCOUNT
        assert resolve_discount(D("0"), D("0")) is NO_DISCOUNT


class TestRounding:
    def test_half_rounds_away_from_zero(self):
        assert round_half_away_from_zero(D("10.5")) == D("11")
        assert round_half_away_from_zero(D("-10.5")) == D("-11")
        assert round_half_away_from_zero(D("10.4999")) == D("10")
        assert round_half_away_from_zero(D("2.5")) == D("3")


class TestTaxBreakdown:
    def test_groups_by_rate_highest_first(self):
        results = [
            compute_line(line("1", "100", rate="18")),
            compute_line(line("2", "50", rate="5")),
            compute_line(line("1", "100", discount="20", rate="18")),
            compute_line(line("1", "30")),
        ]
        rows = tax_breakdown(results)

        assert [row.tax_rate for row in rows] == [D("18"), D("5"), D("0")]

        top = rows[0]
        assert top.taxable_amount == D("180")
        assert top.component_rate == D("9")
        assert top.central_tax == D("16.2")
        assert top.state_tax == D("16.2")
        assert top.total_tax == D("32.4")

        zero = rows[2]
        assert zero.taxable_amount == D("30")
        assert zero.total_tax == D("0")

    def test_breakdown_matches_tax_total(self):
        lines = [line("1", "99.99", rate="12"), line("4", "12.5", rate="28"), line("2", "10", rate="12")]
        totals = calculate_totals(lines)
        rows = tax_breakdown(totals.lines)
        assert sum(row.total_tax for row in rows) == totals.tax_total

    def test_equal_rates_with_different_scale_share_a_row(self):
        rows = tax_breakdown([
            compute_line(line("1", "10", rate="18")),
            compute_line(line("1", "10", rate="18.00")),
        ])
        assert len(rows) == 1
        assert rows[0].taxable_amount == D("20")

    def test_tax_excluded_reports_zero_components(self):
        totals = calculate_totals([line("1", "100", rate="18")], include_tax=False)
        rows = tax_breakdown(totals.lines, include_tax=False)
        assert rows[0].component_rate == D("0")
        assert rows[0].total_tax == D("0")
