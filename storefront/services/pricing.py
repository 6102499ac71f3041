# storefront/services/pricing.py
"""Per-line price/stock resolution and the shipping/tax summary.

Line totals are kept at full precision; rounding to cents happens once,
when a summary is built.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from ..config import PricingConfig
from ..errors import VariantNotFound
from ..model import Product, ProductVariant
from ..utils.money import D, ZERO, money_float, round_money


@dataclass(frozen=True)
class LineQuote:
    product: Product
    variant: ProductVariant | None
    requested: int
    available: int
    quantity: int             # min(requested, available), never negative
    unit_price: Decimal
    line_total: Decimal       # unit_price * quantity, unrounded

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0

    @property
    def sku(self) -> str:
        return self.variant.sku if self.variant else self.product.sku

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)


def resolve_variant(product: Product, variant_sku: str | None) -> ProductVariant | None:
    if not variant_sku:
        return None
    variant = product.find_variant(variant_sku)
    if variant is None:
        raise VariantNotFound(str(variant_sku).strip().upper(), product.id)
    return variant


def available_stock(product: Product, variant: ProductVariant | None) -> int:
    return int((variant.stock if variant else product.stock) or 0)


def unit_price(product: Product, variant: ProductVariant | None, now=None) -> Decimal:
    # an active sale overrides the variant price
    if product.is_on_sale_now(now):
        return D(product.sale_price)
    if variant is not None:
        return D(variant.price)
    return D(product.price)


def resolve_line(product: Product, variant_sku: str | None, requested, now=None) -> LineQuote:
    variant = resolve_variant(product, variant_sku)
    requested = max(int(requested or 0), 0)
    available = max(available_stock(product, variant), 0)
    price = unit_price(product, variant, now)
    qty = min(requested, available)
    return LineQuote(
        product=product,
        variant=variant,
        requested=requested,
        available=available,
        quantity=qty,
        unit_price=price,
        line_total=price * qty,
    )


@dataclass(frozen=True)
class PriceSummary:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal

    def as_api(self):
        return {
            "subtotal": money_float(self.subtotal),
            "shipping": money_float(self.shipping),
            "tax": money_float(self.tax),
            "total": money_float(self.total),
        }


def shipping_for(subtotal, config: PricingConfig) -> Decimal:
    if D(subtotal) >= config.free_shipping_threshold:
        return ZERO
    return round_money(config.flat_shipping_fee)


def summarize(raw_subtotal, config: PricingConfig) -> PriceSummary:
    """Round the accumulated subtotal once, then derive shipping, tax and total."""
    subtotal = round_money(raw_subtotal)
    shipping = shipping_for(subtotal, config)
    tax = round_money(subtotal * config.tax_rate)
    return PriceSummary(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
    )
