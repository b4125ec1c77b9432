from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from app.services.line_item_service import (
    ChargeOptions,
    calculate_invoice_totals,
    calculate_quick_estimate,
    create_line_item,
    format_quick_estimate,
    generate_hourly_tour_line_items,
    generate_template_line_items,
    generate_transfer_line_items,
    get_pricing_template,
)

TUESDAY = date(2025, 6, 3)
SATURDAY = date(2025, 6, 7)


class CreateLineItemTests(unittest.TestCase):
    def test_per_person_charges_only_guests_beyond_included(self) -> None:
        item = create_line_item(
            description='Additional guests',
            category='additional_guest',
            rate_type='per_person',
            unit_price=Decimal('50'),
            quantity=6,
            included_in_base=4,
            tax_rate=Decimal('0.091'),
        )
        self.assertEqual(item.line_total, Decimal('100.00'))
        self.assertEqual(item.tax_amount, Decimal('9.10'))

    def test_fixed_ignores_quantity(self) -> None:
        item = create_line_item(description='Flat', category='fixed_private', rate_type='fixed', unit_price=400, quantity=3)
        self.assertEqual(item.line_total, Decimal('400.00'))
        self.assertEqual(item.tax_amount, Decimal('0.00'))

    def test_non_taxable_items_carry_no_tax(self) -> None:
        item = create_line_item(
            description='Tip',
            category='tip',
            rate_type='fixed',
            unit_price=50,
            is_taxable=False,
            tax_rate=Decimal('0.091'),
        )
        self.assertEqual(item.tax_amount, Decimal('0.00'))
        self.assertEqual(item.tax_rate, Decimal('0'))

    def test_invalid_items_raise(self) -> None:
        with self.assertRaises(ValueError):
            create_line_item(description='x', category='add_on', rate_type='per_week', unit_price=1)
        with self.assertRaises(ValueError):
            create_line_item(description='x', category='add_on', rate_type='per_hour', unit_price=1, quantity=-1)


class GeneratedLineItemTests(unittest.TestCase):
    def test_hourly_tour_with_tip_and_processing_fee(self) -> None:
        items = generate_hourly_tour_line_items(
            guest_count=4,
            hours=Decimal('6'),
            tour_date=TUESDAY,
            options=ChargeOptions(include_tip=True, include_processing_fee=True),
        )
        self.assertEqual([item.category for item in items], ['hourly_tour', 'tip', 'processing_fee'])
        self.assertEqual(items[0].description, 'Wine Tour - 6 hours (3-4 guests, Sun-Wed rate)')
        self.assertEqual(items[1].description, 'Gratuity (20%)')
        self.assertEqual(items[1].line_total, Decimal('114.00'))
        self.assertEqual(items[2].line_total, Decimal('21.64'))

        totals = calculate_invoice_totals(items)
        self.assertEqual(totals.subtotal, Decimal('570.00'))
        self.assertEqual(totals.tax_amount, Decimal('51.87'))
        self.assertEqual(totals.tip_amount, Decimal('114.00'))
        self.assertEqual(totals.processing_fee, Decimal('21.64'))
        self.assertEqual(totals.total_amount, Decimal('757.51'))

    def test_template_weekend_with_extras(self) -> None:
        template = get_pricing_template(1)
        items = generate_template_line_items(
            template=template,
            guest_count=6,
            duration_hours=7,
            tour_date=SATURDAY,
        )
        self.assertEqual(
            [item.line_total for item in items],
            [Decimal('900.00'), Decimal('100.00'), Decimal('150.00'), Decimal('135.00')],
        )
        totals = calculate_invoice_totals(items)
        self.assertEqual(totals.subtotal, Decimal('1285.00'))
        self.assertEqual(totals.tax_amount, Decimal('116.94'))

        estimate = calculate_quick_estimate(template=template, guest_count=6, duration_hours=7, tour_date=SATURDAY)
        self.assertEqual(estimate.estimated_total, totals.total_amount)
        self.assertEqual(format_quick_estimate(estimate), '$1,402')

    def test_large_group_discount_reduces_tax(self) -> None:
        template = get_pricing_template(1)
        items = generate_template_line_items(template=template, guest_count=10, duration_hours=6, tour_date=TUESDAY)
        discount = items[-1]
        self.assertEqual(discount.category, 'discount')
        self.assertEqual(discount.line_total, Decimal('-120.00'))
        self.assertEqual(discount.tax_amount, Decimal('-10.92'))

        totals = calculate_invoice_totals(items)
        estimate = calculate_quick_estimate(template=template, guest_count=10, duration_hours=6, tour_date=TUESDAY)
        self.assertEqual(totals.subtotal, estimate.subtotal)
        self.assertEqual(totals.tax_amount, estimate.estimated_tax)

    def test_template_guest_limit(self) -> None:
        with self.assertRaises(ValueError):
            generate_template_line_items(template=get_pricing_template(2), guest_count=15, duration_hours=4, tour_date=TUESDAY)

    def test_transfer_without_rate_raises(self) -> None:
        with self.assertRaises(ValueError):
            generate_transfer_line_items(route_name='Pasco to Walla Walla', fixed_rate=0)

    def test_unknown_template_raises(self) -> None:
        with self.assertRaises(ValueError):
            get_pricing_template(99)


if __name__ == '__main__':
    unittest.main()
