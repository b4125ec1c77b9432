from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from app.services.rate_config_service import (
    RateConfig,
    WineTourQuote,
    as_date,
    calculate_tax,
    calculate_wine_tour_price,
    get_rates,
    money,
)

NEGATIVE_MODIFIER_TYPES = {'discount', 'early_bird', 'volume'}
ALL_DAYS = frozenset(range(7))


@dataclass(frozen=True)
class PricingModifier:
    name: str
    modifier_type: str
    value_type: str
    value: Decimal
    priority: int = 0
    is_stackable: bool = True
    min_party_size: int | None = None
    max_party_size: int | None = None
    min_advance_days: int | None = None
    min_booking_amount: Decimal | None = None
    # Python weekday numbers, Monday == 0.
    applies_days: frozenset[int] = ALL_DAYS


@dataclass(frozen=True)
class AppliedModifier:
    name: str
    modifier_type: str
    value: Decimal
    amount: Decimal


@dataclass(frozen=True)
class PriceCalculation:
    base_amount: Decimal
    modifiers: list[AppliedModifier]
    total_modifier_amount: Decimal
    final_price: Decimal
    breakdown: list[str] = field(default_factory=list)


def applicable_modifiers(
    modifiers: list[PricingModifier],
    *,
    party_size: int,
    service_date: date | datetime | str,
    booking_amount: Decimal,
    advance_days: int = 0,
) -> list[PricingModifier]:
    weekday = as_date(service_date).weekday()
    matches = [
        modifier
        for modifier in modifiers
        if weekday in modifier.applies_days
        and (modifier.min_party_size is None or modifier.min_party_size <= party_size)
        and (modifier.max_party_size is None or modifier.max_party_size >= party_size)
        and (modifier.min_advance_days is None or modifier.min_advance_days <= advance_days)
        and (modifier.min_booking_amount is None or modifier.min_booking_amount <= booking_amount)
    ]
    return sorted(matches, key=lambda modifier: modifier.priority, reverse=True)


def _signed_amount(modifier: PricingModifier, running_price: Decimal) -> Decimal:
    if modifier.value_type == 'percentage':
        amount = running_price * (modifier.value / Decimal('100'))
    elif modifier.value_type == 'fixed':
        amount = modifier.value
    else:
        raise ValueError(f'Unknown modifier value type: {modifier.value_type}')
    amount = money(abs(amount))
    return -amount if modifier.modifier_type in NEGATIVE_MODIFIER_TYPES else amount


def apply_modifiers(
    base_amount: Decimal,
    modifiers: list[PricingModifier],
    *,
    minimum_charge: Decimal = Decimal('0'),
    base_label: str = 'Base',
) -> PriceCalculation:
    """
    Apply modifiers in the given order. Percentages are taken on the running
    price. A non-stackable modifier is the last one applied.
    """
    running = money(base_amount)
    applied: list[AppliedModifier] = []
    breakdown = [f'{base_label}: ${running:,.2f}']

    for modifier in modifiers:
        amount = _signed_amount(modifier, running)
        applied.append(
            AppliedModifier(name=modifier.name, modifier_type=modifier.modifier_type, value=modifier.value, amount=amount)
        )
        running += amount
        sign = '+' if amount >= 0 else '-'
        breakdown.append(f'{modifier.name}: {sign}${abs(amount):,.2f}')
        if not modifier.is_stackable:
            break

    final_price = max(running, money(minimum_charge))
    if final_price != running:
        breakdown.append(f'Minimum charge: ${final_price:,.2f}')

    return PriceCalculation(
        base_amount=money(base_amount),
        modifiers=applied,
        total_modifier_amount=sum((item.amount for item in applied), Decimal('0')),
        final_price=final_price,
        breakdown=breakdown,
    )


@dataclass(frozen=True)
class ModifiedWineTourQuote:
    quote: WineTourQuote
    pricing: PriceCalculation
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def price_wine_tour(
    duration: Decimal | int | float,
    party_size: int,
    tour_date: date | datetime | str,
    *,
    modifiers: list[PricingModifier] | None = None,
    rates: RateConfig | None = None,
    booked_on: date | None = None,
) -> ModifiedWineTourQuote:
    """
    Rate-table wine tour quote with the matching modifiers applied to the
    subtotal. Tax is recomputed on the modified subtotal.
    """
    rates = rates or get_rates()
    quote = calculate_wine_tour_price(duration, party_size, tour_date, rates)
    service_date = as_date(tour_date)
    matches = applicable_modifiers(
        modifiers or [],
        party_size=party_size,
        service_date=service_date,
        booking_amount=quote.subtotal,
        advance_days=max(0, (service_date - (booked_on or date.today())).days),
    )
    pricing = apply_modifiers(quote.subtotal, matches, base_label=f'Base ({quote.rate_tier}, {quote.day_type_label} rate)')
    if not pricing.modifiers:
        return ModifiedWineTourQuote(quote=quote, pricing=pricing, subtotal=quote.subtotal, tax=quote.tax, total=quote.total)

    tax = calculate_tax(pricing.final_price, rates)
    return ModifiedWineTourQuote(
        quote=quote,
        pricing=pricing,
        subtotal=pricing.final_price,
        tax=tax,
        total=pricing.final_price + tax,
    )
