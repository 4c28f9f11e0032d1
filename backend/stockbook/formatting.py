# Overview: Display formatting driven by CURRENCY_SYMBOL and DATE_FORMAT.

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from .money_utils import quantize_money, quantize_quantity


def format_currency(amount) -> str:
    """format_currency(Decimal("1180.5")) -> "₹1,180.50" with the default symbol."""
    symbol = current_app.config.get("CURRENCY_SYMBOL", "₹")
    value = quantize_money(Decimal(amount or 0))
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_date(value: date | None) -> str:
    if value is None:
        return ""
    return value.strftime(current_app.config.get("DATE_FORMAT", "%d/%m/%Y"))


def format_quantity(value) -> str:
    """Trailing zeros dropped: 4.000 -> "4", 2.500 -> "2.5"."""
    return f"{quantize_quantity(value).normalize():f}"
