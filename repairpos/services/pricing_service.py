"""
Pricing calculator for the POS checkout.

Turns a cart plus discount inputs, the wholesale flag and the cost of any
linked repairs into a fully itemized total. Every function here is pure:
no database access and no side effects, so callers may recompute on every
cart change.

Money is handled as Decimal and quantized to cents. Out-of-range numeric
input is clamped instead of raising.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')
DEFAULT_WHOLESALE_DISCOUNT_RATE = Decimal('10')

Number = Union[Decimal, int, float, str, None]


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Convert user/session input to Decimal, returning ``default`` when invalid."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            text = str(value).strip()
            if not text:
                return default
            result = Decimal(text)
        except (InvalidOperation, ValueError, TypeError):
            return default
    if not result.is_finite():
        return default
    return result


def round2(value: Number) -> Decimal:
    """Round to 2 decimals (cents)."""
    return to_decimal(value).quantize(CENT)


def clamp_percent(value: Number) -> Decimal:
    """Clamp a percentage to [0, 100]; invalid or negative input counts as 0."""
    pct = to_decimal(value)
    if pct < 0:
        return Decimal('0')
    if pct > HUNDRED:
        return HUNDRED
    return pct


class TaxConfig:
    """Shop tax settings: a rate (fraction, e.g. 0.10) and whether shelf prices include it."""

    def __init__(self, rate: Number = 0, prices_include_tax: bool = False):
        rate = to_decimal(rate)
        # A rate written as a percentage (16 instead of 0.16) is normalized
        if rate > 1:
            rate = rate / HUNDRED
        self.rate = rate if rate > 0 else Decimal('0')
        self.prices_include_tax = bool(prices_include_tax)

    @classmethod
    def from_app_config(cls, config) -> 'TaxConfig':
        return cls(config.get('TAX_RATE', 0), config.get('PRICES_INCLUDE_TAX', False))

    def __repr__(self):
        return f"<TaxConfig(rate={self.rate}, prices_include_tax={self.prices_include_tax})>"


def extract_inclusive_tax(gross: Number, rate: Number) -> Tuple[Decimal, Decimal]:
    """Split a tax-inclusive amount into (net, tax)."""
    gross = round2(gross)
    rate = to_decimal(rate)
    if gross == 0 or rate <= 0:
        return gross, ZERO
    net = (gross / (1 + rate)).quantize(CENT)
    return net, gross - net


def add_exclusive_tax(net: Number, rate: Number) -> Tuple[Decimal, Decimal]:
    """Compute tax on a tax-exclusive amount; returns (net, tax)."""
    net = round2(net)
    rate = to_decimal(rate)
    if rate <= 0:
        return net, ZERO
    return net, (net * rate).quantize(CENT)


def split_tax(amount: Number, tax_config: TaxConfig) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (net, tax, gross) for an amount priced per ``tax_config``."""
    if tax_config.prices_include_tax:
        net, tax = extract_inclusive_tax(amount, tax_config.rate)
    else:
        net, tax = add_exclusive_tax(amount, tax_config.rate)
    return net, tax, net + tax


def _quantity(value: Any) -> int:
    qty = to_decimal(value)
    if qty <= 0:
        return 0
    return int(qty)


def applied_unit_price(item: Dict[str, Any], is_wholesale: bool, wholesale_discount_rate: Number) -> Decimal:
    """
    Unit price charged for a cart item.

    Wholesale customers pay the explicit wholesale price when the item has one,
    otherwise list price minus the flat wholesale rate. Services keep list price.
    """
    list_price = max(to_decimal(item.get('unit_price')), ZERO)
    if not is_wholesale or item.get('is_service'):
        return round2(list_price)

    wholesale_price = to_decimal(item.get('wholesale_unit_price'), default=None)
    if wholesale_price is not None:
        return round2(max(wholesale_price, ZERO))

    rate = clamp_percent(wholesale_discount_rate)
    return round2(list_price * (1 - rate / HUNDRED))


def _sum_repair_cost(linked_repair_cost: Union[Number, Iterable[Number]]) -> Optional[Decimal]:
    if linked_repair_cost is None:
        return None
    if isinstance(linked_repair_cost, (list, tuple)):
        total = sum((max(to_decimal(c), ZERO) for c in linked_repair_cost), ZERO)
    else:
        total = max(to_decimal(linked_repair_cost), ZERO)
    return round2(total)


def compute_cart_calculations(
    cart: Optional[List[Dict[str, Any]]],
    discount_percent: Number = 0,
    is_wholesale: bool = False,
    wholesale_discount_rate: Number = DEFAULT_WHOLESALE_DISCOUNT_RATE,
    linked_repair_cost: Union[Number, Iterable[Number]] = None,
    tax_config: Optional[TaxConfig] = None,
    amount_tendered: Number = 0
) -> Dict[str, Any]:
    """
    Compute the itemized totals of a checkout.

    Args:
        cart: list of cart items ``{id, name, unit_price, wholesale_unit_price?, quantity, is_service?}``
        discount_percent: general discount over the merchandise subtotal (clamped to 0..100)
        is_wholesale: apply wholesale pricing
        wholesale_discount_rate: percent off list price when an item has no wholesale price
        linked_repair_cost: gross cost of linked repairs (a number or a list of numbers)
        tax_config: shop TaxConfig; no tax when omitted
        amount_tendered: cash handed over by the customer

    Returns:
        Dict with subtotal, discounts, tax, repair breakdown, total, change and
        remaining. ``subtotal_after_discounts`` is the merchandise amount as priced
        on the shelf: when prices include tax, ``tax`` is the part of it that is IVA;
        otherwise ``tax`` is added on top.
    """
    tax_config = tax_config or TaxConfig()
    wholesale_rate = clamp_percent(wholesale_discount_rate)
    is_wholesale = bool(is_wholesale)

    lines = []
    subtotal = ZERO
    subtotal_non_wholesale = ZERO

    for item in cart or []:
        qty = _quantity(item.get('quantity'))
        list_price = round2(max(to_decimal(item.get('unit_price')), ZERO))
        unit_price = applied_unit_price(item, is_wholesale, wholesale_rate)
        line_total = (unit_price * qty).quantize(CENT)

        lines.append({
            'id': item.get('id'),
            'name': item.get('name'),
            'quantity': qty,
            'list_unit_price': list_price,
            'unit_price': unit_price,
            'line_total': line_total,
        })
        subtotal += line_total
        subtotal_non_wholesale += (list_price * qty).quantize(CENT)

    wholesale_discount_amount = ZERO
    if is_wholesale:
        # Informational: already reflected in unit prices
        wholesale_discount_amount = max(subtotal_non_wholesale - subtotal, ZERO)

    discount_pct = clamp_percent(discount_percent)
    general_discount_amount = (subtotal * discount_pct / HUNDRED).quantize(CENT)
    subtotal_after_discounts = subtotal - general_discount_amount

    taxable_base, tax, merchandise_total = split_tax(subtotal_after_discounts, tax_config)
    if tax_config.prices_include_tax:
        merchandise_total = subtotal_after_discounts

    repair_cost = _sum_repair_cost(linked_repair_cost)
    repair_subtotal = repair_tax = repair_cost_with_tax = ZERO
    if repair_cost is not None:
        repair_subtotal, repair_tax, repair_cost_with_tax = split_tax(repair_cost, tax_config)

    total = merchandise_total + repair_cost_with_tax

    tendered = round2(max(to_decimal(amount_tendered), ZERO))
    change = max(ZERO, tendered - total)
    remaining = round2(max(ZERO, total - tendered))

    return {
        'lines': lines,
        'subtotal': subtotal,
        'subtotal_non_wholesale': subtotal_non_wholesale,
        'general_discount_percent': discount_pct,
        'general_discount_amount': general_discount_amount,
        'wholesale_discount_amount': wholesale_discount_amount,
        'wholesale_discount_rate': wholesale_rate if is_wholesale else Decimal('0'),
        'subtotal_after_discounts': subtotal_after_discounts,
        'taxable_base': taxable_base,
        'has_repairs': repair_cost is not None,
        'repair_subtotal': repair_subtotal,
        'repair_tax': repair_tax,
        'repair_cost_with_tax': repair_cost_with_tax,
        'tax': tax,
        'tax_rate': tax_config.rate,
        'prices_include_tax': tax_config.prices_include_tax,
        'total': total,
        'amount_tendered': tendered,
        'change': change,
        'remaining': remaining,
    }


def calculate_repair_total(
    labor_cost: Number,
    parts_cost: Number,
    tax_rate: Number = 10,
    discount_percentage: Number = None,
    discount_amount: Number = None,
    prices_include_tax: bool = True
) -> Dict[str, Any]:
    """
    Repair total with separate IVA for labor and parts.

    ``tax_rate`` is a percentage here (10 = 10%). A discount, given as an amount
    or as a percentage of the tax-inclusive total, is spread proportionally over
    the labor/parts subtotals and their tax.
    """
    labor_cost = max(round2(labor_cost), ZERO)
    parts_cost = max(round2(parts_cost), ZERO)
    rate = clamp_percent(tax_rate) / HUNDRED

    if prices_include_tax:
        labor_subtotal, labor_tax = extract_inclusive_tax(labor_cost, rate)
        parts_subtotal, parts_tax = extract_inclusive_tax(parts_cost, rate)
    else:
        labor_subtotal, labor_tax = add_exclusive_tax(labor_cost, rate)
        parts_subtotal, parts_tax = add_exclusive_tax(parts_cost, rate)

    empty_breakdown = {'labor_tax': ZERO, 'parts_tax': ZERO, 'labor_subtotal': ZERO, 'parts_subtotal': ZERO}
    if labor_subtotal + parts_subtotal == 0:
        return {
            'labor_cost': labor_cost, 'parts_cost': parts_cost,
            'subtotal': ZERO, 'tax_amount': ZERO, 'discount_amount': ZERO, 'total': ZERO,
            'breakdown': empty_breakdown,
        }

    discount = ZERO
    if to_decimal(discount_amount) > 0:
        discount = round2(discount_amount)
    elif to_decimal(discount_percentage) > 0:
        discount = ((labor_cost + parts_cost) * clamp_percent(discount_percentage) / HUNDRED).quantize(CENT)

    base_total = labor_cost + parts_cost
    ratio = discount / base_total if base_total > 0 else Decimal('0')

    def _apply(value):
        return max(ZERO, value - value * ratio)

    final_labor_subtotal = _apply(labor_subtotal)
    final_parts_subtotal = _apply(parts_subtotal)
    final_labor_tax = _apply(labor_tax)
    final_parts_tax = _apply(parts_tax)

    final_subtotal = final_labor_subtotal + final_parts_subtotal
    final_tax = final_labor_tax + final_parts_tax

    return {
        'labor_cost': labor_cost,
        'parts_cost': parts_cost,
        'subtotal': round2(final_subtotal),
        'tax_amount': round2(final_tax),
        'discount_amount': round2(discount),
        'total': round2(final_subtotal + final_tax),
        'breakdown': {
            'labor_tax': round2(final_labor_tax),
            'parts_tax': round2(final_parts_tax),
            'labor_subtotal': round2(final_labor_subtotal),
            'parts_subtotal': round2(final_parts_subtotal),
        },
    }


def calculate_change(total: Number, amount_paid: Number) -> Decimal:
    """Change to hand back; never negative."""
    return max(ZERO, round2(to_decimal(amount_paid) - to_decimal(total)))


def calculate_profit_margin(cost: Number, price: Number) -> Decimal:
    """Margin over sale price, in percent."""
    price = to_decimal(price)
    if price == 0:
        return ZERO
    return round2((price - to_decimal(cost)) / price * HUNDRED)


def calculate_markup(cost: Number, price: Number) -> Decimal:
    """Markup over cost, in percent."""
    cost = to_decimal(cost)
    if cost == 0:
        return ZERO
    return round2((to_decimal(price) - cost) / cost * HUNDRED)
