from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, require_staff
from app.db import get_db
from app.dependencies import get_rate_config
from app.errors import ValidationError
from app.schemas import (
    EstimateRequest,
    SharedTourQuoteRequest,
    TransferQuoteRequest,
    WaitTimeQuoteRequest,
    WineTourQuoteRequest,
)
from app.services.line_item_service import (
    calculate_quick_estimate,
    default_pricing_templates,
    format_quick_estimate,
    get_pricing_template,
)
from app.services.pricing_modifier_service import price_wine_tour
from app.services.rate_config_service import (
    RateConfig,
    calculate_deposit,
    calculate_shared_tour_price,
    calculate_tax,
    calculate_transfer_price,
    calculate_wait_time_price,
    check_shared_tour_day,
    format_currency,
    format_day_type,
    get_day_type,
    get_transfer_route,
)
from app.services.rate_table_service import load_pricing_modifiers

router = APIRouter(prefix='/api/rates', tags=['rates'])


def _hourly_tables(tables) -> dict:
    return {
        day_type.value: {
            'label': format_day_type(day_type),
            'minimum_hours': str(table.minimum_hours),
            'tiers': [
                {'guests': tier.label, 'min': tier.guest_min, 'max': tier.guest_max, 'rate': str(tier.rate)}
                for tier in table.tiers
            ],
        }
        for day_type, table in tables.items()
    }


def serialize_rates(rates: RateConfig) -> dict:
    return {
        'wine_tours': _hourly_tables(rates.wine_tours),
        'wait_time': _hourly_tables(rates.wait_time),
        'shared_tours': {
            'base_rate': str(rates.shared_tours.base_rate),
            'with_lunch_rate': str(rates.shared_tours.with_lunch_rate),
            'days': list(rates.shared_tours.days),
            'max_guests': rates.shared_tours.max_guests,
        },
        'transfers': {
            code: {
                'name': route.name,
                'origin': route.origin,
                'destination': route.destination,
                'fixed_rate': str(route.fixed_rate) if route.fixed_rate is not None else None,
            }
            for code, route in rates.transfer_routes.items()
        },
        'local_transfer': {
            'base_rate': str(rates.local_transfer.base_rate),
            'per_mile': str(rates.local_transfer.per_mile),
            'base_miles': rates.local_transfer.base_miles,
        },
        'tax_rate': str(rates.tax_rate),
        'deposit_percentage': str(rates.deposit_percentage),
        'additional_services': {name: str(price) for name, price in rates.additional_services.items()},
    }


@router.get('')
def get_rates(
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    return serialize_rates(rates)


@router.post('/quote/wine-tour')
def quote_wine_tour(
    payload: WineTourQuoteRequest,
    db: Session = Depends(get_db),
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    try:
        priced = price_wine_tour(
            payload.duration_hours,
            payload.party_size,
            payload.tour_date,
            modifiers=load_pricing_modifiers(db, on_date=payload.tour_date),
            rates=rates,
        )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    quote = priced.quote
    return {
        'hourly_rate': str(quote.hourly_rate),
        'hours': str(quote.hours),
        'minimum_hours': str(quote.minimum_hours),
        'day_type': quote.day_type.value,
        'day_type_label': quote.day_type_label,
        'rate_tier': quote.rate_tier,
        'base_subtotal': str(quote.subtotal),
        'modifiers': [
            {'name': item.name, 'type': item.modifier_type, 'amount': str(item.amount)}
            for item in priced.pricing.modifiers
        ],
        'breakdown': priced.pricing.breakdown,
        'subtotal': str(priced.subtotal),
        'tax': str(priced.tax),
        'total': str(priced.total),
        'deposit': str(calculate_deposit(priced.total, rates=rates)),
        'formatted_total': format_currency(priced.total),
    }


@router.post('/quote/shared-tour')
def quote_shared_tour(
    payload: SharedTourQuoteRequest,
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    try:
        if payload.tour_date:
            check_shared_tour_day(payload.tour_date, rates)
        quote = calculate_shared_tour_price(payload.guests, payload.include_lunch, rates)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return {
        'per_person_rate': str(quote.per_person_rate),
        'guests': quote.guests,
        'includes_lunch': quote.includes_lunch,
        'subtotal': str(quote.subtotal),
        'tax': str(quote.tax),
        'total': str(quote.total),
        'formatted_total': format_currency(quote.total),
    }


@router.post('/quote/transfer')
def quote_transfer(
    payload: TransferQuoteRequest,
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    try:
        price = calculate_transfer_price(payload.route, payload.miles, rates)
        route = None if payload.route == 'local' else get_transfer_route(payload.route, rates)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return {
        'route': payload.route,
        'name': route.name if route else 'Local Transfer',
        'price': str(price),
        'rate_available': price > 0,
        'tax': str(calculate_tax(price, rates)),
        'formatted_price': format_currency(price),
    }


@router.post('/quote/wait-time')
def quote_wait_time(
    payload: WaitTimeQuoteRequest,
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    try:
        price = calculate_wait_time_price(payload.hours, payload.party_size, payload.wait_date, rates)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    response = {
        'hours': str(payload.hours),
        'party_size': payload.party_size,
        'price': str(price),
        'formatted_price': format_currency(price),
    }
    if payload.wait_date:
        response['day_type'] = get_day_type(payload.wait_date).value
    return response


@router.get('/templates')
def list_templates(principal: Principal = Depends(require_staff)):
    return [
        {key: str(value) if not isinstance(value, (bool, int, str)) else value for key, value in asdict(template).items()}
        for template in default_pricing_templates()
        if template.is_active
    ]


@router.post('/estimate')
def estimate(
    payload: EstimateRequest,
    rates: RateConfig = Depends(get_rate_config),
    principal: Principal = Depends(require_staff),
):
    try:
        template = get_pricing_template(payload.template_id)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    result = calculate_quick_estimate(
        template=template,
        guest_count=payload.guest_count,
        duration_hours=payload.duration_hours,
        tour_date=payload.tour_date,
        rates=rates,
    )
    response = {key: str(value) for key, value in asdict(result).items()}
    response['template'] = template.name
    response['formatted_total'] = format_quick_estimate(result)
    return response
