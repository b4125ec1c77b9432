from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache

from app.config import settings
from app.models import DayType

CENT = Decimal('0.01')
DAY_NAMES = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
THU_SAT_WEEKDAYS = {3, 4, 5}
DAY_TYPE_LABELS = {DayType.SUN_WED: 'Sun-Wed', DayType.THU_SAT: 'Thu-Sat'}


@dataclass(frozen=True)
class RateTier:
    label: str
    guest_min: int
    guest_max: int
    rate: Decimal


@dataclass(frozen=True)
class HourlyRateTable:
    tiers: tuple[RateTier, ...]
    minimum_hours: Decimal

    def tier_for(self, party_size: int) -> RateTier:
        if party_size < 1:
            raise ValueError('Party size must be at least 1')
        ordered = sorted(self.tiers, key=lambda tier: tier.guest_min)
        for tier in ordered:
            if tier.guest_min <= party_size <= tier.guest_max:
                return tier
        # Parties above the largest bucket are billed at the top tier.
        if party_size > ordered[-1].guest_max:
            return ordered[-1]
        raise ValueError(f'No rate tier covers a party of {party_size}')


@dataclass(frozen=True)
class SharedTourRates:
    base_rate: Decimal
    with_lunch_rate: Decimal
    days: tuple[str, ...]
    max_guests: int


@dataclass(frozen=True)
class TransferRoute:
    code: str
    name: str
    origin: str
    destination: str
    fixed_rate: Decimal | None


@dataclass(frozen=True)
class LocalTransferRates:
    base_rate: Decimal
    per_mile: Decimal
    base_miles: int


@dataclass(frozen=True)
class RateConfig:
    wine_tours: dict[DayType, HourlyRateTable]
    wait_time: dict[DayType, HourlyRateTable]
    shared_tours: SharedTourRates
    transfer_routes: dict[str, TransferRoute]
    local_transfer: LocalTransferRates
    tax_rate: Decimal
    deposit_percentage: Decimal
    additional_services: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class WineTourQuote:
    hourly_rate: Decimal
    hours: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    day_type: DayType
    day_type_label: str
    rate_tier: str
    minimum_hours: Decimal


@dataclass(frozen=True)
class SharedTourQuote:
    per_person_rate: Decimal
    guests: int
    includes_lunch: bool
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def _tiers(*rows: tuple[int, int, str]) -> tuple[RateTier, ...]:
    return tuple(
        RateTier(label=f'{guest_min}-{guest_max}', guest_min=guest_min, guest_max=guest_max, rate=Decimal(rate))
        for guest_min, guest_max, rate in rows
    )


def default_rate_config() -> RateConfig:
    return RateConfig(
        wine_tours={
            DayType.SUN_WED: HourlyRateTable(
                tiers=_tiers((1, 2, '85'), (3, 4, '95'), (5, 6, '105'), (7, 8, '115'), (9, 11, '130'), (12, 14, '140')),
                minimum_hours=Decimal('4'),
            ),
            DayType.THU_SAT: HourlyRateTable(
                tiers=_tiers((1, 2, '95'), (3, 4, '105'), (5, 6, '115'), (7, 8, '125'), (9, 11, '140'), (12, 14, '150')),
                minimum_hours=Decimal('5'),
            ),
        },
        wait_time={
            DayType.SUN_WED: HourlyRateTable(
                tiers=_tiers((1, 4, '75'), (5, 8, '95'), (9, 14, '110')),
                minimum_hours=Decimal('1'),
            ),
            DayType.THU_SAT: HourlyRateTable(
                tiers=_tiers((1, 4, '85'), (5, 8, '105'), (9, 14, '120')),
                minimum_hours=Decimal('1'),
            ),
        },
        shared_tours=SharedTourRates(
            base_rate=Decimal('95'),
            with_lunch_rate=Decimal('115'),
            days=('Sunday', 'Monday', 'Tuesday', 'Wednesday'),
            max_guests=14,
        ),
        transfer_routes={
            route.code: route
            for route in (
                TransferRoute('seatac_to_walla', 'SeaTac to Walla Walla', 'Seattle-Tacoma International Airport', 'Walla Walla', Decimal('850')),
                TransferRoute('walla_to_seatac', 'Walla Walla to SeaTac', 'Walla Walla', 'Seattle-Tacoma International Airport', Decimal('850')),
                TransferRoute('pasco_to_walla', 'Pasco to Walla Walla', 'Tri-Cities Airport (PSC)', 'Walla Walla', None),
                TransferRoute('walla_to_pasco', 'Walla Walla to Pasco', 'Walla Walla', 'Tri-Cities Airport (PSC)', None),
                TransferRoute('pendleton_to_walla', 'Pendleton to Walla Walla', 'Eastern Oregon Regional Airport', 'Walla Walla', None),
                TransferRoute('walla_to_pendleton', 'Walla Walla to Pendleton', 'Walla Walla', 'Eastern Oregon Regional Airport', None),
                TransferRoute('lagrande_to_walla', 'La Grande to Walla Walla', 'La Grande', 'Walla Walla', None),
                TransferRoute('walla_to_lagrande', 'Walla Walla to La Grande', 'Walla Walla', 'La Grande', None),
            )
        },
        local_transfer=LocalTransferRates(base_rate=Decimal('100'), per_mile=Decimal('3'), base_miles=10),
        tax_rate=settings.tax_rate,
        deposit_percentage=settings.deposit_percentage,
        additional_services={
            'lunch_coordination': Decimal('0'),
            'catered_lunch': Decimal('0'),
            'catered_dinner': Decimal('0'),
            'photography': Decimal('0'),
            'custom_itinerary': Decimal('0'),
        },
    )


@lru_cache(maxsize=1)
def get_rates() -> RateConfig:
    return default_rate_config()


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f'Invalid amount: {value!r}') from exc


def as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Calendar date only; no timezone shift for 'YYYY-MM-DD' input.
    return date.fromisoformat(str(value).strip()[:10])


def get_day_type(value: date | datetime | str) -> DayType:
    return DayType.THU_SAT if as_date(value).weekday() in THU_SAT_WEEKDAYS else DayType.SUN_WED


def format_day_type(day_type: DayType) -> str:
    return DAY_TYPE_LABELS[day_type]


def get_day_of_week(value: date | datetime | str) -> str:
    return DAY_NAMES[as_date(value).weekday()]


def is_shared_tour_day(value: date | datetime | str, rates: RateConfig | None = None) -> bool:
    rates = rates or get_rates()
    return get_day_of_week(value) in rates.shared_tours.days


def check_shared_tour_day(value: date | datetime | str, rates: RateConfig | None = None) -> None:
    rates = rates or get_rates()
    if not is_shared_tour_day(value, rates):
        raise ValueError(
            f'Shared tours do not run on {get_day_of_week(value)}; '
            f'available days: {", ".join(rates.shared_tours.days)}'
        )


def get_rate_tier(party_size: int, rates: RateConfig | None = None) -> str:
    rates = rates or get_rates()
    return rates.wine_tours[DayType.SUN_WED].tier_for(party_size).label


def get_hourly_rate(party_size: int, tour_date: date | datetime | str, rates: RateConfig | None = None) -> Decimal:
    rates = rates or get_rates()
    return rates.wine_tours[get_day_type(tour_date)].tier_for(party_size).rate


def calculate_tax(amount: Decimal | int | float, rates: RateConfig | None = None) -> Decimal:
    rates = rates or get_rates()
    return money(to_decimal(amount) * rates.tax_rate)


def calculate_deposit(
    total: Decimal | int | float,
    percentage: Decimal | None = None,
    rates: RateConfig | None = None,
) -> Decimal:
    rates = rates or get_rates()
    pct = rates.deposit_percentage if percentage is None else to_decimal(percentage)
    if pct < 0 or pct > 1:
        raise ValueError('Deposit percentage must be between 0 and 1')
    return money(to_decimal(total) * pct)


def calculate_wine_tour_price(
    duration: Decimal | int | float,
    party_size: int,
    tour_date: date | datetime | str,
    rates: RateConfig | None = None,
) -> WineTourQuote:
    rates = rates or get_rates()
    hours_requested = to_decimal(duration)
    if hours_requested <= 0:
        raise ValueError('Duration must be greater than zero')

    day_type = get_day_type(tour_date)
    table = rates.wine_tours[day_type]
    tier = table.tier_for(party_size)
    billable_hours = max(hours_requested, table.minimum_hours)

    subtotal = money(tier.rate * billable_hours)
    tax = calculate_tax(subtotal, rates)
    return WineTourQuote(
        hourly_rate=tier.rate,
        hours=billable_hours,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        day_type=day_type,
        day_type_label=format_day_type(day_type),
        rate_tier=f'{tier.label} guests',
        minimum_hours=table.minimum_hours,
    )


def calculate_shared_tour_price(
    guests: int,
    include_lunch: bool = True,
    rates: RateConfig | None = None,
) -> SharedTourQuote:
    rates = rates or get_rates()
    if guests < 1:
        raise ValueError('Shared tours require at least one guest')
    if guests > rates.shared_tours.max_guests:
        raise ValueError(f'Shared tours are limited to {rates.shared_tours.max_guests} guests')

    per_person = rates.shared_tours.with_lunch_rate if include_lunch else rates.shared_tours.base_rate
    subtotal = money(per_person * guests)
    tax = calculate_tax(subtotal, rates)
    return SharedTourQuote(
        per_person_rate=per_person,
        guests=guests,
        includes_lunch=include_lunch,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
    )


def get_transfer_route(route: str, rates: RateConfig | None = None) -> TransferRoute:
    rates = rates or get_rates()
    found = rates.transfer_routes.get(route)
    if found is None:
        raise ValueError(f'Unknown transfer route: {route}')
    return found


def calculate_transfer_price(
    route: str,
    miles: Decimal | int | float | None = None,
    rates: RateConfig | None = None,
) -> Decimal:
    """Price a transfer. Routes without a published rate quote as zero."""
    rates = rates or get_rates()
    if route == 'local':
        local = rates.local_transfer
        distance = to_decimal(miles or 0)
        if distance < 0:
            raise ValueError('Miles cannot be negative')
        extra_miles = max(Decimal('0'), distance - local.base_miles)
        return money(local.base_rate + extra_miles * local.per_mile)

    fixed = get_transfer_route(route, rates).fixed_rate
    return money(fixed) if fixed is not None else Decimal('0.00')


def calculate_wait_time_price(
    hours: Decimal | int | float,
    party_size: int = 4,
    wait_date: date | datetime | str | None = None,
    rates: RateConfig | None = None,
) -> Decimal:
    rates = rates or get_rates()
    table = rates.wait_time[get_day_type(wait_date or date.today())]
    billable_hours = max(to_decimal(hours), table.minimum_hours)
    return money(billable_hours * table.tier_for(party_size).rate)


def format_currency(amount: Decimal | int | float | None) -> str:
    if amount is None:
        return '$0.00'
    try:
        value = to_decimal(amount)
    except ValueError:
        return '$0.00'
    if not value.is_finite():
        return '$0.00'
    return f'${money(value):,.2f}'
