"""
Outbound orders

An order is never stored. At checkout the cart is snapshotted into an Order,
rendered as a WhatsApp-formatted text and handed over as a wa.me deep link.
Nothing comes back; once the link is produced the order counts as sent and
the cart is cleared.
"""
import logging
import re
from typing import Tuple
from urllib.parse import quote

import config
from exceptions import StoreError
from schemas import CustomerDetails, Order

logger = logging.getLogger(__name__)

WHATSAPP_URL = "https://wa.me/{number}?text={text}"

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def format_price(value: float) -> str:
    return f"{config.CURRENCY_SYMBOL} {value:.2f}".replace(".", ",")


def build_order(store, customer: CustomerDetails) -> Order:
    if store.store_config is None:
        raise StoreError("Store settings are not loaded")
    if not store.cart:
        raise StoreError("Cart is empty")

    subtotal = round(store.get_cart_total(), 2)
    # A negative fee stored remotely is treated as free delivery
    delivery_fee = max(store.store_config.delivery_fee or 0.0, 0.0)
    return Order(
        items=[item.model_copy(deep=True) for item in store.cart],
        customer_name=customer.customer_name,
        customer_phone=customer.customer_phone,
        delivery_address=customer.delivery_address or None,
        notes=customer.notes or None,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=round(subtotal + delivery_fee, 2),
    )


def format_order_message(order: Order) -> str:
    lines = [
        f"{item.quantity}x {item.product.name} - {format_price(item.line_total)}"
        + (f" ({item.notes})" if item.notes else "")
        for item in order.items
    ]
    parts = [
        "🍔 *NEW ORDER*",
        "",
        f"*Customer:* {order.customer_name}",
        f"*Phone:* {order.customer_phone}",
    ]
    if order.delivery_address:
        parts.append(f"*Address:* {order.delivery_address}")
    parts += [
        "",
        "*Order:*",
        *lines,
        "",
        f"*Subtotal:* {format_price(order.subtotal)}",
        f"*Delivery fee:* {format_price(order.delivery_fee)}",
        f"*Total:* {format_price(order.total)}",
    ]
    if order.notes:
        parts += ["", f"*Notes:* {order.notes}"]
    return "\n".join(parts)


def whatsapp_url(number: str, message: str) -> str:
    digits = re.sub(r"\D", "", number)
    return WHATSAPP_URL.format(number=digits, text=quote(message, safe=_URI_COMPONENT_SAFE))


def checkout(store, customer: CustomerDetails) -> Tuple[Order, str]:
    order = build_order(store, customer)
    url = whatsapp_url(store.store_config.whatsapp_number, format_order_message(order))
    store.clear_cart()
    logger.info(f"Order for {order.customer_name} sent, total {order.total:.2f}")
    return order, url
