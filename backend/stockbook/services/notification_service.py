# Overview: Plain-text new-invoice notifications over the Telegram Bot API.

from __future__ import annotations

import logging

import httpx
from flask import current_app

from ..errors import NotificationError
from ..formatting import format_currency, format_date
from ..models import Invoice

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


def is_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("TELEGRAM_BOT_TOKEN") and cfg.get("TELEGRAM_CHAT_ID"))


def build_invoice_message(invoice: Invoice) -> str:
    lines = [
        f"New invoice {invoice.invoice_number}",
        f"Date: {format_date(invoice.invoice_date)}",
        f"Customer: {invoice.party_name or '-'}",
        f"Items: {len(invoice.items)}",
        f"Taxable: {format_currency(invoice.subtotal)}",
        f"Tax: {format_currency(invoice.tax_amount)}",
        f"Total: {format_currency(invoice.total_amount)}",
    ]
    if invoice.number_source != "sequence":
        lines.append(f"Number source: {invoice.number_source} (review)")
    return "\n".join(lines)


def send_message(text: str, *, client: httpx.Client | None = None) -> dict:
    """
    POST sendMessage. Any transport error, non-2xx status or ok=false reply
    raises NotificationError.
    """
    cfg = current_app.config
    url = f"{TELEGRAM_API}/bot{cfg['TELEGRAM_BOT_TOKEN']}/sendMessage"
    payload = {"chat_id": cfg["TELEGRAM_CHAT_ID"], "text": text}

    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=cfg.get("NOTIFICATION_TIMEOUT_SECONDS", 5.0))
    try:
        response = client.post(url, json=payload)
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as exc:
        raise NotificationError(
            f"Telegram returned HTTP {exc.response.status_code}",
            details={"status_code": exc.response.status_code},
        ) from exc
    except httpx.HTTPError as exc:
        raise NotificationError(f"Telegram request failed: {exc}") from exc
    except ValueError as exc:
        raise NotificationError("Telegram returned a non-JSON reply") from exc
    finally:
        if own_client:
            client.close()

    if not body.get("ok"):
        raise NotificationError(
            f"Telegram rejected the message: {body.get('description', 'unknown error')}",
            details={"reply": body},
        )
    return body


def notify_invoice_created(invoice: Invoice, *, client: httpx.Client | None = None) -> bool:
    """Returns False when notifications are not configured."""
    if not is_configured():
        return False
    send_message(build_invoice_message(invoice), client=client)
    logger.info("Sent invoice notification for %s", invoice.invoice_number)
    return True
