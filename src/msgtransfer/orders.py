"""
Order payloads scheduled through the transfer service.

Orders are the business messages held in the source queue. The order id
doubles as message identity and correlation id.

This module provides:
- OrderPayload and its parts: Pydantic models serialized to JSON bodies
- generate_orders(): Sample orders for schedule_batch()
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

ORDER_CONTENT_TYPE = "application/json"


class OrderLineItem(BaseModel):
    """One line of an order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sku: str
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(alias="unitPrice", ge=0)


class Payment(BaseModel):
    """Payment details of an order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    method: str
    masked_card: str = Field(alias="maskedCard")
    amount: float = Field(ge=0)
    currency: str = "USD"


class OrderMeta(BaseModel):
    """Origin metadata, copied into message properties when scheduled."""

    model_config = ConfigDict(frozen=True)

    brand: str = "generic"
    channel: str = "app"
    version: str = "1.0.0"


class OrderPayload(BaseModel):
    """
    Order message body.

    Serialized with camelCase keys so consumers of the destination queue see
    the same body the source queue held.

    Example:
        >>> order = generate_orders(1)[0]
        >>> body = order.to_bytes()
        >>> OrderPayload.from_bytes(body) == order
        True
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    placed_at: datetime = Field(
        alias="placedAt",
        default_factory=lambda: datetime.now(UTC),
    )
    line_items: list[OrderLineItem] = Field(alias="lineItems", default_factory=list)
    payment: Payment | None = None
    metadata: OrderMeta = Field(default_factory=OrderMeta)

    def to_bytes(self) -> bytes:
        """JSON body with camelCase keys."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, body: bytes | str) -> OrderPayload:
        """Parse a JSON body produced by to_bytes()."""
        return cls.model_validate_json(body)


def new_order_id(now: datetime, rng: random.Random | None = None) -> str:
    """
    Build an order id of the form ORD-YYYY-MM-DD-NNNNNN.

    The numeric suffix is random; ids are not guaranteed unique across calls.
    """
    rng = rng or random.Random()
    return f"ORD-{now.astimezone(UTC):%Y-%m-%d}-{rng.randrange(1_000_000):06d}"


def generate_orders(
    count: int,
    *,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    rng: random.Random | None = None,
) -> list[OrderPayload]:
    """
    Generate sample orders.

    Args:
        count: Number of orders; values below 1 yield an empty list
        clock: Returns the current aware UTC instant
        rng: Random source for order id suffixes

    Returns:
        Orders with a fixed basket, card payment and default metadata
    """
    rng = rng or random.Random()
    orders = []
    for _ in range(max(count, 0)):
        now = clock()
        orders.append(
            OrderPayload(
                order_id=new_order_id(now, rng),
                placed_at=now,
                line_items=[
                    OrderLineItem(sku="SKU-COF", name="Coffee", quantity=1, unit_price=3.50),
                    OrderLineItem(sku="SKU-FRY", name="Fries", quantity=1, unit_price=2.00),
                    OrderLineItem(sku="SKU-BUR", name="Burger", quantity=1, unit_price=6.50),
                ],
                payment=Payment(
                    method="CARD",
                    masked_card="**** **** **** 4242",
                    amount=12.00,
                    currency="USD",
                ),
                metadata=OrderMeta(),
            )
        )
    return orders


__all__ = [
    "ORDER_CONTENT_TYPE",
    "OrderLineItem",
    "Payment",
    "OrderMeta",
    "OrderPayload",
    "generate_orders",
    "new_order_id",
]
