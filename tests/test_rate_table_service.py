from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.config import settings
from app.models import DayType
from app.services.rate_config_service import (
    calculate_transfer_price,
    get_hourly_rate,
    get_rates,
)
from app.services.rate_table_service import load_pricing_modifiers, load_rate_config

TUESDAY = date(2025, 6, 3)
THURSDAY = date(2025, 6, 5)


def _rows(*rows) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(rows)
    return result


def _tier(day_type: str, guest_min: int, guest_max: int, rate: str, minimum_hours: int = 4) -> SimpleNamespace:
    return SimpleNamespace(
        day_type=day_type,
        guest_min=guest_min,
        guest_max=guest_max,
        hourly_rate=Decimal(rate),
        minimum_hours=minimum_hours,
    )


def _modifier_row(**overrides) -> SimpleNamespace:
    data = {
        'name': 'Weekend surcharge',
        'modifier_type': 'surcharge',
        'value_type': 'percentage',
        'value': Decimal('10.00'),
        'priority': 5,
        'is_stackable': True,
        'min_party_size': None,
        'max_party_size': None,
        'min_advance_days': None,
        'min_booking_amount': None,
        'applies_monday': False,
        'applies_tuesday': False,
        'applies_wednesday': False,
        'applies_thursday': True,
        'applies_friday': True,
        'applies_saturday': True,
        'applies_sunday': False,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


class ConfigRateSourceTests(unittest.TestCase):
    def test_built_in_tables_skip_the_database(self) -> None:
        db = MagicMock()
        with patch.object(settings, 'rate_source', 'config'):
            self.assertEqual(load_rate_config(db), get_rates())
            self.assertEqual(load_pricing_modifiers(db), [])
        db.execute.assert_not_called()


class DatabaseRateSourceTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch.object(settings, 'rate_source', 'database')
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_missing_sections_fall_back_to_built_in_rates(self) -> None:
        db = MagicMock()
        db.execute.side_effect = [
            _rows(_tier('sun_wed', 1, 2, '90.00'), _tier('sun_wed', 3, 14, '100.00')),
            _rows(),
            _rows(),
            _rows(),
        ]

        rates = load_rate_config(db)
        defaults = get_rates()

        self.assertEqual(get_hourly_rate(2, TUESDAY, rates), Decimal('90.00'))
        self.assertEqual(get_hourly_rate(20, TUESDAY, rates), Decimal('100.00'))
        self.assertEqual(rates.wine_tours[DayType.SUN_WED].minimum_hours, Decimal('4'))
        self.assertEqual(rates.wine_tours[DayType.THU_SAT], defaults.wine_tours[DayType.THU_SAT])
        self.assertEqual(rates.wait_time, defaults.wait_time)
        self.assertEqual(rates.shared_tours, defaults.shared_tours)
        self.assertEqual(rates.transfer_routes, defaults.transfer_routes)
        self.assertEqual(rates.local_transfer, defaults.local_transfer)
        self.assertEqual(db.execute.call_count, 4)

    def test_database_sections_replace_built_in_rates(self) -> None:
        db = MagicMock()
        db.execute.side_effect = [
            _rows(),
            _rows(_tier('thu_sat', 1, 14, '80.00', minimum_hours=2)),
            _rows(
                SimpleNamespace(per_person_rate=Decimal('99.00'), includes_lunch=False, available_days=['Monday'], max_guests=12),
                SimpleNamespace(per_person_rate=Decimal('120.00'), includes_lunch=True, available_days=['Monday'], max_guests=10),
            ),
            _rows(
                SimpleNamespace(
                    route_code='SEATAC_TO_WALLA',
                    route_name='SeaTac to Walla Walla',
                    origin='SeaTac',
                    destination='Walla Walla',
                    fixed_rate=Decimal('900.00'),
                    per_mile_rate=Decimal('0'),
                    included_miles=0,
                ),
                SimpleNamespace(
                    route_code='local',
                    route_name='Local Transfer',
                    origin='Walla Walla Area',
                    destination='Walla Walla Area',
                    fixed_rate=Decimal('120.00'),
                    per_mile_rate=Decimal('4.00'),
                    included_miles=5,
                ),
            ),
        ]

        rates = load_rate_config(db)

        self.assertEqual(rates.wine_tours, get_rates().wine_tours)
        self.assertEqual(rates.wait_time[DayType.THU_SAT].tiers[0].rate, Decimal('80.00'))
        self.assertEqual(rates.wait_time[DayType.THU_SAT].minimum_hours, Decimal('2'))
        self.assertEqual(rates.shared_tours.with_lunch_rate, Decimal('120.00'))
        self.assertEqual(rates.shared_tours.days, ('Monday',))
        self.assertEqual(rates.shared_tours.max_guests, 10)
        self.assertEqual(list(rates.transfer_routes), ['seatac_to_walla'])
        self.assertEqual(calculate_transfer_price('seatac_to_walla', rates=rates), Decimal('900.00'))
        self.assertEqual(calculate_transfer_price('local', Decimal('10'), rates), Decimal('140.00'))

    def test_incomplete_shared_tour_rows_keep_built_in_rates(self) -> None:
        db = MagicMock()
        db.execute.side_effect = [
            _rows(),
            _rows(),
            _rows(SimpleNamespace(per_person_rate=Decimal('99.00'), includes_lunch=False, available_days=['Monday'], max_guests=12)),
            _rows(),
        ]
        self.assertEqual(load_rate_config(db).shared_tours, get_rates().shared_tours)

    def test_modifier_rows_become_pricing_modifiers(self) -> None:
        db = MagicMock()
        db.execute.return_value = _rows(
            _modifier_row(),
            _modifier_row(
                name='Early bird',
                modifier_type='early_bird',
                value=Decimal('5.00'),
                priority=1,
                is_stackable=False,
                min_advance_days=30,
                min_booking_amount=Decimal('500.00'),
                applies_monday=True,
            ),
        )

        modifiers = load_pricing_modifiers(db, on_date=THURSDAY)

        self.assertEqual([item.name for item in modifiers], ['Weekend surcharge', 'Early bird'])
        self.assertEqual(modifiers[0].applies_days, frozenset({3, 4, 5}))
        self.assertEqual(modifiers[1].applies_days, frozenset({0, 3, 4, 5}))
        self.assertFalse(modifiers[1].is_stackable)
        self.assertEqual(modifiers[1].min_booking_amount, Decimal('500.00'))
        db.execute.assert_called_once()


if __name__ == '__main__':
    unittest.main()
