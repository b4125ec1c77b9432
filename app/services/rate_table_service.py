from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import DayType, HourlyRateTier, PricingModifierRule, SharedTourRate, TransferRate
from app.services.pricing_modifier_service import PricingModifier
from app.services.rate_config_service import (
    HourlyRateTable,
    LocalTransferRates,
    RateConfig,
    RateTier,
    SharedTourRates,
    TransferRoute,
    get_rates,
)

logger = logging.getLogger(__name__)

LOCAL_ROUTE_CODE = 'local'
# Indexed by Python weekday, Monday == 0.
WEEKDAY_COLUMNS = (
    'applies_monday',
    'applies_tuesday',
    'applies_wednesday',
    'applies_thursday',
    'applies_friday',
    'applies_saturday',
    'applies_sunday',
)


def _hourly_tables(db: Session, *, service_type: str) -> dict[DayType, HourlyRateTable]:
    rows = db.execute(
        select(HourlyRateTier)
        .where(HourlyRateTier.service_type == service_type, HourlyRateTier.is_active.is_(True))
        .order_by(HourlyRateTier.day_type.asc(), HourlyRateTier.guest_min.asc())
    ).scalars().all()
    by_day: dict[DayType, list[HourlyRateTier]] = {}
    for row in rows:
        by_day.setdefault(DayType(row.day_type), []).append(row)

    return {
        day_type: HourlyRateTable(
            tiers=tuple(
                RateTier(
                    label=f'{row.guest_min}-{row.guest_max}',
                    guest_min=row.guest_min,
                    guest_max=row.guest_max,
                    rate=Decimal(row.hourly_rate),
                )
                for row in tiers
            ),
            minimum_hours=Decimal(max(row.minimum_hours for row in tiers)),
        )
        for day_type, tiers in by_day.items()
    }


def _shared_tour_rates(db: Session) -> SharedTourRates | None:
    rows = db.execute(select(SharedTourRate).where(SharedTourRate.is_active.is_(True))).scalars().all()
    base = next((row for row in rows if not row.includes_lunch), None)
    with_lunch = next((row for row in rows if row.includes_lunch), None)
    if base is None or with_lunch is None:
        return None
    return SharedTourRates(
        base_rate=Decimal(base.per_person_rate),
        with_lunch_rate=Decimal(with_lunch.per_person_rate),
        days=tuple(base.available_days),
        max_guests=min(base.max_guests, with_lunch.max_guests),
    )


def _transfer_rates(db: Session) -> tuple[dict[str, TransferRoute], LocalTransferRates | None]:
    rows = db.execute(select(TransferRate).where(TransferRate.is_active.is_(True))).scalars().all()
    routes: dict[str, TransferRoute] = {}
    local: LocalTransferRates | None = None
    for row in rows:
        code = row.route_code.lower()
        if code == LOCAL_ROUTE_CODE:
            local = LocalTransferRates(
                base_rate=Decimal(row.fixed_rate or 0),
                per_mile=Decimal(row.per_mile_rate),
                base_miles=row.included_miles,
            )
            continue
        routes[code] = TransferRoute(
            code=code,
            name=row.route_name,
            origin=row.origin,
            destination=row.destination,
            fixed_rate=Decimal(row.fixed_rate) if row.fixed_rate is not None else None,
        )
    return routes, local


def _uses_database() -> bool:
    return settings.rate_source.strip().lower() == 'database'


def load_rate_config(db: Session) -> RateConfig:
    """
    Resolve the rate tables in effect. Any section missing from the database
    keeps the built-in defaults so a partially seeded database still quotes.
    """
    defaults = get_rates()
    if not _uses_database():
        return defaults

    wine_tours = {**defaults.wine_tours, **_hourly_tables(db, service_type='wine_tour')}
    wait_time = {**defaults.wait_time, **_hourly_tables(db, service_type='wait_time')}
    shared = _shared_tour_rates(db) or defaults.shared_tours
    routes, local = _transfer_rates(db)
    if not routes:
        logger.warning('No active transfer routes in database; using built-in routes')

    return replace(
        defaults,
        wine_tours=wine_tours,
        wait_time=wait_time,
        shared_tours=shared,
        transfer_routes=routes or defaults.transfer_routes,
        local_transfer=local or defaults.local_transfer,
    )


def load_pricing_modifiers(
    db: Session,
    *,
    service_type: str = 'wine_tour',
    on_date: date | None = None,
) -> list[PricingModifier]:
    """Active modifiers for a service. Modifiers only exist in the database rate source."""
    if not _uses_database():
        return []

    query = select(PricingModifierRule).where(
        PricingModifierRule.active.is_(True),
        or_(
            PricingModifierRule.applies_to_service_types.is_(None),
            PricingModifierRule.applies_to_service_types.any(service_type),
        ),
    )
    if on_date:
        query = query.where(
            or_(PricingModifierRule.effective_start_date.is_(None), PricingModifierRule.effective_start_date <= on_date),
            or_(PricingModifierRule.effective_end_date.is_(None), PricingModifierRule.effective_end_date >= on_date),
        )
    rows = db.execute(query.order_by(PricingModifierRule.priority.desc(), PricingModifierRule.id.asc())).scalars().all()
    return [
        PricingModifier(
            name=row.name,
            modifier_type=row.modifier_type,
            value_type=row.value_type,
            value=Decimal(row.value),
            priority=row.priority,
            is_stackable=row.is_stackable,
            min_party_size=row.min_party_size,
            max_party_size=row.max_party_size,
            min_advance_days=row.min_advance_days,
            min_booking_amount=Decimal(row.min_booking_amount) if row.min_booking_amount is not None else None,
            applies_days=frozenset(
                weekday for weekday, column in enumerate(WEEKDAY_COLUMNS) if getattr(row, column)
            ),
        )
        for row in rows
    ]


def seed_rate_tables(db: Session, rates: RateConfig | None = None) -> int:
    """Insert the given rate tables where rows are missing. Returns rows added."""
    rates = rates or get_rates()
    added = 0

    for service_type, tables in (('wine_tour', rates.wine_tours), ('wait_time', rates.wait_time)):
        for day_type, table in tables.items():
            for tier in table.tiers:
                exists = db.execute(
                    select(HourlyRateTier.id).where(
                        HourlyRateTier.service_type == service_type,
                        HourlyRateTier.day_type == day_type,
                        HourlyRateTier.guest_min == tier.guest_min,
                        HourlyRateTier.guest_max == tier.guest_max,
                    )
                ).scalar_one_or_none()
                if exists:
                    continue
                db.add(
                    HourlyRateTier(
                        service_type=service_type,
                        tier_name=f'{tier.label} guests',
                        guest_min=tier.guest_min,
                        guest_max=tier.guest_max,
                        day_type=day_type,
                        hourly_rate=tier.rate,
                        minimum_hours=int(table.minimum_hours),
                    )
                )
                added += 1

    if not db.execute(select(SharedTourRate.id).limit(1)).scalar_one_or_none():
        shared = rates.shared_tours
        db.add(
            SharedTourRate(
                name='Shared Wine Tour',
                description='Join other wine enthusiasts for a group tasting experience',
                per_person_rate=shared.base_rate,
                includes_lunch=False,
                available_days=list(shared.days),
                max_guests=shared.max_guests,
            )
        )
        db.add(
            SharedTourRate(
                name='Shared Wine Tour with Lunch',
                description='Group wine tour with included lunch at a local restaurant',
                per_person_rate=shared.with_lunch_rate,
                includes_lunch=True,
                available_days=list(shared.days),
                max_guests=shared.max_guests,
            )
        )
        added += 2

    existing_codes = set(db.execute(select(TransferRate.route_code)).scalars().all())
    for route in rates.transfer_routes.values():
        if route.code in existing_codes:
            continue
        db.add(
            TransferRate(
                route_code=route.code,
                route_name=route.name,
                origin=route.origin,
                destination=route.destination,
                fixed_rate=route.fixed_rate,
                notes=None if route.fixed_rate is not None else 'Rate TBD',
            )
        )
        added += 1
    if LOCAL_ROUTE_CODE not in existing_codes:
        local = rates.local_transfer
        db.add(
            TransferRate(
                route_code=LOCAL_ROUTE_CODE,
                route_name='Local Transfer',
                origin='Walla Walla Area',
                destination='Walla Walla Area',
                fixed_rate=local.base_rate,
                per_mile_rate=local.per_mile,
                included_miles=local.base_miles,
                notes=f'Base rate includes {local.base_miles} miles, ${local.per_mile}/mile thereafter',
            )
        )
        added += 1

    db.flush()
    logger.info('Rate tables seeded', extra={'rows_added': added})
    return added
