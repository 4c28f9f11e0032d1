import unittest
from decimal import Decimal

from stockbook.services import tax_service


D = Decimal


class ComputeLineTests(unittest.TestCase):
    def test_inclusive_price_at_eighteen_percent(self):
        line = tax_service.compute_line(D("118"), D("18"), 1).rounded()

        self.assertEqual(line.taxable_value, D("100.00"))
        self.assertEqual(line.tax_amount, D("18.00"))
        self.assertEqual(line.cgst, D("9.00"))
        self.assertEqual(line.sgst, D("9.00"))
        self.assertEqual(line.line_total, D("118.00"))

    def test_zero_rate_is_all_taxable(self):
        line = tax_service.compute_line(D("250"), D("0"), D("2"))

        self.assertEqual(line.taxable_value, D("500"))
        self.assertEqual(line.tax_amount, D("0"))
        self.assertEqual(line.line_total, D("500"))

    def test_quantity_scales_line(self):
        line = tax_service.compute_line(D("105"), D("5"), D("3")).rounded()

        self.assertEqual(line.line_total, D("315.00"))
        self.assertEqual(line.taxable_value, D("300.00"))
        self.assertEqual(line.tax_amount, D("15.00"))

    def test_rounded_line_still_adds_up(self):
        line = tax_service.compute_line(D("100"), D("5"), 1).rounded()

        self.assertEqual(line.taxable_value, D("95.24"))
        self.assertEqual(line.tax_amount, D("4.76"))
        self.assertEqual(line.taxable_value + line.tax_amount, line.line_total)

    def test_odd_paisa_goes_to_sgst(self):
        line = tax_service.compute_line(D("1"), D("18"), 1).rounded()

        self.assertEqual(line.tax_amount, D("0.15"))
        self.assertEqual(line.cgst, D("0.08"))
        self.assertEqual(line.sgst, D("0.07"))
        self.assertEqual(line.cgst + line.sgst, line.tax_amount)

    def test_unrounded_components_are_exact_halves(self):
        line = tax_service.compute_line(D("59"), D("18"), 1)
        self.assertEqual(line.cgst, line.sgst)
        self.assertEqual(line.cgst + line.sgst, line.tax_amount)


class ComputeTotalsTests(unittest.TestCase):
    def test_totals_are_sums_of_lines(self):
        lines = [
            tax_service.compute_line(D("118"), D("18"), 2).rounded(),
            tax_service.compute_line(D("105"), D("5"), 1).rounded(),
            tax_service.compute_line(D("40"), D("0"), 3).rounded(),
        ]
        totals = tax_service.compute_totals(lines)

        self.assertEqual(totals.subtotal, D("200.00") + D("100.00") + D("120.00"))
        self.assertEqual(totals.tax_amount, D("36.00") + D("5.00"))
        self.assertEqual(totals.total_amount, D("236.00") + D("105.00") + D("120.00"))
        self.assertEqual(totals.cgst + totals.sgst, totals.tax_amount)

    def test_empty_totals_are_zero(self):
        totals = tax_service.compute_totals([])
        self.assertEqual(totals.total_amount, D("0"))
        self.assertEqual(totals.subtotal, D("0"))


class SummarizeByRateTests(unittest.TestCase):
    def test_groups_lines_by_rate(self):
        lines = [
            tax_service.compute_line(D("118"), D("18"), 1).rounded(),
            tax_service.compute_line(D("236"), D("18"), 1).rounded(),
            tax_service.compute_line(D("105"), D("5"), 1).rounded(),
        ]
        summary = tax_service.summarize_by_rate(lines)

        self.assertEqual([row["tax_rate"] for row in summary], [D("5.00"), D("18.00")])
        eighteen = summary[1]
        self.assertEqual(eighteen["subtotal"], D("300.00"))
        self.assertEqual(eighteen["tax_amount"], D("54.00"))
        self.assertEqual(eighteen["total_amount"], D("354.00"))


if __name__ == "__main__":
    unittest.main()
