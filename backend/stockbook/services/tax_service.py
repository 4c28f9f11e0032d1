"""
Tax Service - GST decomposition of tax-inclusive prices

Prices on products and invoice lines INCLUDE tax. For each line:

    line_total    = quantity * unit_price
    taxable_value = line_total / (1 + tax_rate / 100)
    tax_amount    = line_total - taxable_value
    cgst = sgst   = tax_amount / 2

Invoice totals are the SUM of per-line values, never one tax computed on the
aggregate, so mixed tax rates do not drift.

This module is pure arithmetic on Decimal. It does not validate: callers
reject missing, zero or negative quantities/prices before getting here.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..money_utils import ZERO, quantize_money

HUNDRED = Decimal("100")
TWO = Decimal("2")


@dataclass(frozen=True)
class LineTax:
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    taxable_value: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    line_total: Decimal

    def rounded(self) -> "LineTax":
        """
        Two-decimal version for persistence.

        taxable_value and line_total are rounded independently and the tax is
        their difference, so taxable_value + tax_amount == line_total still
        holds exactly. An odd paisa of tax goes to SGST.
        """
        line_total = quantize_money(self.line_total)
        taxable_value = quantize_money(self.taxable_value)
        tax_amount = line_total - taxable_value
        cgst = quantize_money(tax_amount / TWO)
        return LineTax(
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            taxable_value=taxable_value,
            tax_amount=tax_amount,
            cgst=cgst,
            sgst=tax_amount - cgst,
            line_total=line_total,
        )

    def to_dict(self) -> dict:
        return {
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "tax_rate": self.tax_rate,
            "taxable_value": self.taxable_value,
            "tax_amount": self.tax_amount,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "line_total": self.line_total,
        }


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    total_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "total_amount": self.total_amount,
        }


def split_tax(tax_amount: Decimal) -> tuple[Decimal, Decimal]:
    """Even CGST/SGST split (unrounded)."""
    half = tax_amount / TWO
    return half, half


def compute_line(unit_price, tax_rate, quantity) -> LineTax:
    unit_price = Decimal(unit_price)
    tax_rate = Decimal(tax_rate)
    quantity = Decimal(quantity)

    line_total = quantity * unit_price
    if tax_rate == 0:
        taxable_value = line_total
    else:
        taxable_value = line_total / (1 + tax_rate / HUNDRED)
    tax_amount = line_total - taxable_value
    cgst, sgst = split_tax(tax_amount)

    return LineTax(
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=tax_rate,
        taxable_value=taxable_value,
        tax_amount=tax_amount,
        cgst=cgst,
        sgst=sgst,
        line_total=line_total,
    )


def compute_totals(lines: Iterable[LineTax]) -> InvoiceTotals:
    subtotal = tax_amount = cgst = sgst = total = ZERO
    for line in lines:
        subtotal += line.taxable_value
        tax_amount += line.tax_amount
        cgst += line.cgst
        sgst += line.sgst
        total += line.line_total
    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        cgst=cgst,
        sgst=sgst,
        total_amount=total,
    )


def summarize_by_rate(lines: Iterable[LineTax]) -> list[dict]:
    """Per-rate GST summary, the table printed under an invoice."""
    groups: dict[Decimal, list[LineTax]] = {}
    for line in lines:
        groups.setdefault(quantize_money(line.tax_rate), []).append(line)

    summary = []
    for rate in sorted(groups):
        totals = compute_totals(groups[rate])
        row = {"tax_rate": rate}
        row.update(totals.to_dict())
        summary.append(row)
    return summary
