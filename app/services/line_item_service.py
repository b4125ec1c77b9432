from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from app.config import settings
from app.services.rate_config_service import (
    RateConfig,
    as_date,
    calculate_shared_tour_price,
    calculate_wine_tour_price,
    format_day_type,
    get_day_type,
    get_rates,
    money,
    to_decimal,
)

RATE_TYPES = {'fixed', 'per_person', 'per_hour', 'per_day'}
NON_SUBTOTAL_CATEGORIES = {'tip', 'processing_fee'}
ZERO = Decimal('0')


@dataclass(frozen=True)
class LineItem:
    description: str
    category: str
    rate_type: str
    unit_price: Decimal
    quantity: Decimal
    included_in_base: int
    is_taxable: bool
    tax_rate: Decimal
    line_total: Decimal
    tax_amount: Decimal
    display_order: int
    is_visible: bool = True
    notes: str | None = None


@dataclass(frozen=True)
class ChargeOptions:
    include_tip: bool = False
    tip_percentage: Decimal | None = None
    include_processing_fee: bool = False
    processing_fee_percentage: Decimal | None = None
    processing_fee_flat_rate: Decimal | None = None


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    tip_amount: Decimal
    processing_fee: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PricingTemplate:
    id: int
    name: str
    description: str
    service_type: str
    base_price: Decimal
    base_guests_included: int
    per_person_rate: Decimal
    max_guests: int
    base_hours: Decimal
    per_hour_rate: Decimal
    weekend_surcharge_type: str = 'percentage'
    weekend_surcharge_value: Decimal = Decimal('15')
    applies_friday: bool = True
    applies_saturday: bool = True
    applies_sunday: bool = True
    holiday_surcharge_type: str = 'percentage'
    holiday_surcharge_value: Decimal = Decimal('25')
    large_group_threshold: int = 10
    large_group_discount_type: str = 'percentage'
    large_group_discount_value: Decimal = Decimal('10')
    is_default: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class QuickEstimate:
    base_price: Decimal
    additional_guest_cost: Decimal
    extra_hours_cost: Decimal
    weekend_surcharge: Decimal
    discount: Decimal
    subtotal: Decimal
    estimated_tax: Decimal
    estimated_total: Decimal


def format_number(value: Decimal) -> str:
    normalized = value.normalize()
    return f'{normalized:f}'


def create_line_item(
    *,
    description: str,
    category: str,
    rate_type: str,
    unit_price: Decimal,
    quantity: Decimal | int = 1,
    included_in_base: int = 0,
    is_taxable: bool = True,
    tax_rate: Decimal = ZERO,
    display_order: int = 0,
    is_visible: bool = True,
    notes: str | None = None,
) -> LineItem:
    if rate_type not in RATE_TYPES:
        raise ValueError(f'Unknown rate type: {rate_type}')
    qty = to_decimal(quantity)
    if qty < 0:
        raise ValueError('Quantity cannot be negative')
    if included_in_base < 0:
        raise ValueError('Included guests cannot be negative')

    unit = to_decimal(unit_price)
    if rate_type == 'fixed':
        line_total = unit
    elif rate_type == 'per_person':
        line_total = unit * max(ZERO, qty - included_in_base)
    else:
        line_total = unit * qty
    line_total = money(line_total)

    tax_amount = money(line_total * tax_rate) if is_taxable and tax_rate > 0 else Decimal('0.00')
    return LineItem(
        description=description,
        category=category,
        rate_type=rate_type,
        unit_price=money(unit),
        quantity=qty,
        included_in_base=included_in_base,
        is_taxable=is_taxable,
        tax_rate=tax_rate if is_taxable else ZERO,
        line_total=line_total,
        tax_amount=tax_amount,
        display_order=display_order,
        is_visible=is_visible,
        notes=notes,
    )


def _tip_percentage(options: ChargeOptions) -> Decimal:
    if options.tip_percentage is None:
        return settings.default_tip_percentage
    return to_decimal(options.tip_percentage)


def _append_charges(items: list[LineItem], options: ChargeOptions) -> list[LineItem]:
    tip_pct = _tip_percentage(options)
    if tip_pct < 0:
        raise ValueError('Tip percentage cannot be negative')

    if options.include_tip and tip_pct > 0:
        service_subtotal = sum(
            (item.line_total for item in items if item.category not in NON_SUBTOTAL_CATEGORIES), ZERO
        )
        items.append(
            create_line_item(
                description=f'Gratuity ({format_number(tip_pct)}%)',
                category='tip',
                rate_type='fixed',
                unit_price=money(service_subtotal * tip_pct / Decimal('100')),
                is_taxable=False,
                display_order=len(items) + 1,
                notes='Driver gratuity',
            )
        )

    if options.include_processing_fee:
        fee_pct = (
            settings.processing_fee_percentage
            if options.processing_fee_percentage is None
            else to_decimal(options.processing_fee_percentage)
        )
        fee_flat = (
            settings.processing_fee_flat_rate
            if options.processing_fee_flat_rate is None
            else to_decimal(options.processing_fee_flat_rate)
        )
        total_before_fee = sum((item.line_total + item.tax_amount for item in items), ZERO)
        items.append(
            create_line_item(
                description='Credit Card Processing Fee',
                category='processing_fee',
                rate_type='fixed',
                unit_price=money(total_before_fee * fee_pct / Decimal('100') + fee_flat),
                is_taxable=False,
                display_order=len(items) + 1,
                notes=f'{format_number(fee_pct)}% + ${fee_flat:.2f} per transaction',
            )
        )
    return items


def generate_hourly_tour_line_items(
    *,
    guest_count: int,
    hours: Decimal | int | float,
    tour_date: date | datetime | str,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    pricing = calculate_wine_tour_price(hours, guest_count, tour_date, rates)
    items = [
        create_line_item(
            description=(
                f'Wine Tour - {format_number(pricing.hours)} hours '
                f'({pricing.rate_tier}, {pricing.day_type_label} rate)'
            ),
            category='hourly_tour',
            rate_type='per_hour',
            unit_price=pricing.hourly_rate,
            quantity=pricing.hours,
            tax_rate=rates.tax_rate,
            display_order=1,
            notes=f'${pricing.hourly_rate:,.2f}/hour × {format_number(pricing.hours)} hours',
        )
    ]
    return _append_charges(items, options)


def generate_shared_tour_line_items(
    *,
    ticket_count: int,
    includes_lunch: bool = True,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    pricing = calculate_shared_tour_price(ticket_count, includes_lunch, rates)
    tour_name = 'Shared Wine Tour with Lunch' if includes_lunch else 'Shared Wine Tour'
    items = [
        create_line_item(
            description=f'{ticket_count} × {tour_name}',
            category='shared_tour_ticket',
            rate_type='per_person',
            unit_price=pricing.per_person_rate,
            quantity=ticket_count,
            tax_rate=rates.tax_rate,
            display_order=1,
            notes=f'${pricing.per_person_rate:,.2f} per person' + (' (includes lunch)' if includes_lunch else ''),
        )
    ]
    return _append_charges(items, options)


def generate_fixed_tour_line_items(
    *,
    description: str,
    fixed_amount: Decimal | int | float,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    amount = to_decimal(fixed_amount)
    if amount < 0:
        raise ValueError('Fixed amount cannot be negative')
    if not description.strip():
        raise ValueError('Description is required')
    items = [
        create_line_item(
            description=description.strip(),
            category='fixed_private',
            rate_type='fixed',
            unit_price=amount,
            tax_rate=rates.tax_rate,
            display_order=1,
            notes='Private tour - negotiated rate',
        )
    ]
    return _append_charges(items, options)


def generate_transfer_line_items(
    *,
    route_name: str,
    fixed_rate: Decimal | int | float,
    origin: str | None = None,
    destination: str | None = None,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    amount = to_decimal(fixed_rate)
    if amount <= 0:
        raise ValueError(f'No rate found for transfer route: {route_name}')
    items = [
        create_line_item(
            description=route_name,
            category='transfer',
            rate_type='fixed',
            unit_price=amount,
            tax_rate=rates.tax_rate,
            display_order=1,
            notes=f'{origin} to {destination}' if origin and destination else None,
        )
    ]
    return _append_charges(items, options)


def generate_wait_time_line_items(
    *,
    hours: Decimal | int | float,
    party_size: int,
    wait_date: date | datetime | str,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    day_type = get_day_type(wait_date)
    table = rates.wait_time[day_type]
    tier = table.tier_for(party_size)
    billable_hours = max(to_decimal(hours), table.minimum_hours)
    items = [
        create_line_item(
            description=(
                f'Wait Time - {format_number(billable_hours)} hours '
                f'({tier.label} guests, {format_day_type(day_type)} rate)'
            ),
            category='wait_time',
            rate_type='per_hour',
            unit_price=tier.rate,
            quantity=billable_hours,
            tax_rate=rates.tax_rate,
            display_order=1,
            notes=f'${tier.rate:,.2f}/hour × {format_number(billable_hours)} hours',
        )
    ]
    return _append_charges(items, options)


def _is_template_weekend(template: PricingTemplate, tour_date: date) -> bool:
    weekday = tour_date.weekday()
    return (
        (weekday == 4 and template.applies_friday)
        or (weekday == 5 and template.applies_saturday)
        or (weekday == 6 and template.applies_sunday)
    )


def _adjustment(kind: str, value: Decimal, basis: Decimal) -> Decimal:
    if kind == 'percentage':
        return money(basis * value / Decimal('100'))
    return money(value)


def generate_template_line_items(
    *,
    template: PricingTemplate,
    guest_count: int,
    duration_hours: Decimal | int | float,
    tour_date: date | datetime | str,
    options: ChargeOptions = ChargeOptions(),
    rates: RateConfig | None = None,
) -> list[LineItem]:
    rates = rates or get_rates()
    if guest_count < 1:
        raise ValueError('Guest count must be at least 1')
    if guest_count > template.max_guests:
        raise ValueError(f'{template.name} allows at most {template.max_guests} guests')

    hours = to_decimal(duration_hours)
    service_date = as_date(tour_date)
    additional_guests = max(0, guest_count - template.base_guests_included)
    extra_hours = max(ZERO, hours - template.base_hours)
    tax_rate = rates.tax_rate

    items = [
        create_line_item(
            description=(
                f'{format_number(template.base_hours)}-Hour Wine Tour '
                f'(up to {template.base_guests_included} guests)'
            ),
            category='base_tour',
            rate_type='fixed',
            unit_price=template.base_price,
            tax_rate=tax_rate,
            display_order=1,
            notes='Base tour package',
        )
    ]

    if additional_guests > 0 and template.per_person_rate > 0:
        items.append(
            create_line_item(
                description=f'Additional Guests ({additional_guests} @ ${template.per_person_rate:,.2f}/person)',
                category='additional_guest',
                rate_type='per_person',
                unit_price=template.per_person_rate,
                quantity=guest_count,
                included_in_base=template.base_guests_included,
                tax_rate=tax_rate,
                display_order=len(items) + 1,
                notes=f'For guests {template.base_guests_included + 1} through {guest_count}',
            )
        )

    if extra_hours > 0 and template.per_hour_rate > 0:
        items.append(
            create_line_item(
                description=f'Additional Hours ({format_number(extra_hours)} @ ${template.per_hour_rate:,.2f}/hour)',
                category='add_on',
                rate_type='per_hour',
                unit_price=template.per_hour_rate,
                quantity=extra_hours,
                tax_rate=tax_rate,
                display_order=len(items) + 1,
                notes=f'Extended tour beyond {format_number(template.base_hours)} hours',
            )
        )

    if _is_template_weekend(template, service_date) and template.weekend_surcharge_value > 0:
        is_pct = template.weekend_surcharge_type == 'percentage'
        items.append(
            create_line_item(
                description=(
                    f'Weekend Rate (+{format_number(template.weekend_surcharge_value)}%)' if is_pct else 'Weekend Rate'
                ),
                category='add_on',
                rate_type='fixed',
                unit_price=_adjustment(
                    template.weekend_surcharge_type, template.weekend_surcharge_value, template.base_price
                ),
                tax_rate=tax_rate,
                display_order=len(items) + 1,
                notes='Premium pricing for weekend dates',
            )
        )

    if guest_count >= template.large_group_threshold and template.large_group_discount_value > 0:
        current_subtotal = sum((item.line_total for item in items), ZERO)
        is_pct = template.large_group_discount_type == 'percentage'
        discount = _adjustment(
            template.large_group_discount_type, template.large_group_discount_value, current_subtotal
        )
        items.append(
            create_line_item(
                description=(
                    f'Large Group Discount ({template.large_group_threshold}+ guests, '
                    f'-{format_number(template.large_group_discount_value)}%)'
                    if is_pct
                    else f'Large Group Discount ({template.large_group_threshold}+ guests)'
                ),
                category='discount',
                rate_type='fixed',
                unit_price=-discount,
                # Discount reduces the taxable base of the items it applies to.
                tax_rate=tax_rate,
                display_order=len(items) + 1,
                notes='Volume discount for large parties',
            )
        )

    return _append_charges(items, options)


def calculate_invoice_totals(items: list[LineItem]) -> InvoiceTotals:
    subtotal = sum((item.line_total for item in items if item.category not in NON_SUBTOTAL_CATEGORIES), ZERO)
    tax_amount = sum((item.tax_amount for item in items), ZERO)
    tip_amount = sum((item.line_total for item in items if item.category == 'tip'), ZERO)
    processing_fee = sum((item.line_total for item in items if item.category == 'processing_fee'), ZERO)
    return InvoiceTotals(
        subtotal=money(subtotal),
        tax_amount=money(tax_amount),
        tip_amount=money(tip_amount),
        processing_fee=money(processing_fee),
        total_amount=money(subtotal + tax_amount + tip_amount + processing_fee),
    )


def default_pricing_templates() -> list[PricingTemplate]:
    common = dict(
        service_type='wine_tour',
        base_guests_included=4,
        per_person_rate=Decimal('50'),
        max_guests=14,
        per_hour_rate=Decimal('150'),
    )
    return [
        PricingTemplate(
            id=1,
            name='Standard Wine Tour - 6 Hours',
            description='Full day wine tasting tour with up to 4 guests included',
            base_price=Decimal('900'),
            base_hours=Decimal('6'),
            is_default=True,
            **common,
        ),
        PricingTemplate(
            id=2,
            name='Half Day Wine Tour - 4 Hours',
            description='Afternoon wine tasting tour with up to 4 guests included',
            base_price=Decimal('600'),
            base_hours=Decimal('4'),
            **common,
        ),
        PricingTemplate(
            id=3,
            name='Extended Wine Tour - 8 Hours',
            description='Full day wine experience with up to 4 guests included',
            base_price=Decimal('1200'),
            base_hours=Decimal('8'),
            **common,
        ),
    ]


def get_pricing_template(template_id: int) -> PricingTemplate:
    for template in default_pricing_templates():
        if template.id == template_id and template.is_active:
            return template
    raise ValueError(f'Unknown pricing template: {template_id}')


def calculate_quick_estimate(
    *,
    template: PricingTemplate,
    guest_count: int,
    duration_hours: Decimal | int | float,
    tour_date: date | datetime | str,
    rates: RateConfig | None = None,
) -> QuickEstimate:
    rates = rates or get_rates()
    hours = to_decimal(duration_hours)
    additional_guests = max(0, guest_count - template.base_guests_included)
    extra_hours = max(ZERO, hours - template.base_hours)

    base_price = money(template.base_price)
    additional_guest_cost = money(additional_guests * template.per_person_rate)
    extra_hours_cost = money(extra_hours * template.per_hour_rate)
    weekend_surcharge = ZERO
    if _is_template_weekend(template, as_date(tour_date)):
        weekend_surcharge = _adjustment(
            template.weekend_surcharge_type, template.weekend_surcharge_value, template.base_price
        )

    before_discount = base_price + additional_guest_cost + extra_hours_cost + weekend_surcharge
    discount = ZERO
    if guest_count >= template.large_group_threshold:
        discount = _adjustment(
            template.large_group_discount_type, template.large_group_discount_value, before_discount
        )

    subtotal = money(before_discount - discount)
    estimated_tax = money(subtotal * rates.tax_rate)
    return QuickEstimate(
        base_price=base_price,
        additional_guest_cost=additional_guest_cost,
        extra_hours_cost=extra_hours_cost,
        weekend_surcharge=money(weekend_surcharge),
        discount=money(discount),
        subtotal=subtotal,
        estimated_tax=estimated_tax,
        estimated_total=subtotal + estimated_tax,
    )


def format_quick_estimate(estimate: QuickEstimate) -> str:
    whole = estimate.estimated_total.quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return f'${whole:,.0f}'
