from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import InvoiceStatus, PricingModel, ProposalStatus
from app.schemas import ChargeOptionsIn, CreateInvoiceRequest
from app.services.invoice_service import (
    build_line_items,
    create_invoice,
    create_invoice_from_proposal,
    generate_invoice_number,
    replace_line_items,
    update_status,
)
from app.services.line_item_service import calculate_invoice_totals, generate_hourly_tour_line_items
from app.services.rate_config_service import get_rates

TUESDAY = date(2025, 6, 3)
THURSDAY = date(2025, 6, 5)


def _invoice(**overrides) -> SimpleNamespace:
    data = {
        'id': 5,
        'invoice_number': 'INV-2025-000000005',
        'proposal_id': None,
        'customer_id': 7,
        'pricing_model': PricingModel.HOURLY,
        'status': InvoiceStatus.SENT,
        'tour_date': TUESDAY,
        'subtotal': Decimal('570.00'),
        'tax_amount': Decimal('51.87'),
        'tip_amount': Decimal('0.00'),
        'processing_fee': Decimal('0.00'),
        'total_amount': Decimal('621.87'),
        'deposit_amount': Decimal('310.94'),
        'notes': None,
        'updated_at': None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


class BuildLineItemsTests(unittest.TestCase):
    def test_each_pricing_model_produces_items(self) -> None:
        requests = [
            CreateInvoiceRequest(pricing_model='hourly', guest_count=4, hours=6, tour_date=TUESDAY),
            CreateInvoiceRequest(pricing_model='shared', guest_count=2, includes_lunch=False, tour_date=TUESDAY),
            CreateInvoiceRequest(pricing_model='fixed', description='Private vineyard dinner', fixed_amount=1500),
            CreateInvoiceRequest(pricing_model='transfer', route='seatac_to_walla'),
            CreateInvoiceRequest(pricing_model='wait_time', guest_count=4, hours=2, tour_date=TUESDAY),
            CreateInvoiceRequest(pricing_model='template', template_id=2, guest_count=4, hours=4, tour_date=TUESDAY),
        ]
        expected = ['570.00', '190.00', '1500.00', '850.00', '150.00', '600.00']
        for request, amount in zip(requests, expected):
            items = build_line_items(request, get_rates())
            self.assertEqual(items[0].line_total, Decimal(amount), request.pricing_model)

    def test_local_transfer_uses_mileage(self) -> None:
        request = CreateInvoiceRequest(pricing_model='transfer', route='local', miles=25)
        items = build_line_items(request, get_rates())
        self.assertEqual(items[0].line_total, Decimal('145.00'))

    def test_unpriced_and_unknown_routes_rejected(self) -> None:
        for route in ('pasco_to_walla', 'moon_to_walla'):
            with self.assertRaises(ValidationError):
                build_line_items(CreateInvoiceRequest(pricing_model='transfer', route=route), get_rates())

    def test_missing_model_fields_rejected_by_request_model(self) -> None:
        with self.assertRaises(ValueError):
            CreateInvoiceRequest(pricing_model='hourly', guest_count=4)
        with self.assertRaises(ValueError):
            CreateInvoiceRequest(pricing_model='shared', guest_count=2)

    def test_shared_tour_rejected_on_off_days(self) -> None:
        request = CreateInvoiceRequest(pricing_model='shared', guest_count=2, tour_date=THURSDAY)
        with self.assertRaisesRegex(ValidationError, 'Thursday'):
            build_line_items(request, get_rates())

    def test_hours_limited_to_two_decimal_places(self) -> None:
        with self.assertRaises(ValueError):
            CreateInvoiceRequest(pricing_model='hourly', guest_count=4, hours=Decimal('4.333'), tour_date=TUESDAY)


class ReplaceLineItemsTests(unittest.TestCase):
    def test_totals_and_deposit_follow_stored_items(self) -> None:
        db = MagicMock()
        invoice = SimpleNamespace(id=1)
        items = generate_hourly_tour_line_items(guest_count=4, hours=6, tour_date=TUESDAY)

        rows = replace_line_items(db, invoice, items)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].invoice_id, 1)
        self.assertEqual(invoice.subtotal, Decimal('570.00'))
        self.assertEqual(invoice.total_amount, Decimal('621.87'))
        self.assertEqual(invoice.deposit_amount, Decimal('310.94'))
        db.execute.assert_called_once()
        db.add_all.assert_called_once_with(rows)

    def test_custom_deposit_percentage(self) -> None:
        invoice = SimpleNamespace(id=1)
        items = generate_hourly_tour_line_items(guest_count=4, hours=6, tour_date=TUESDAY)
        replace_line_items(MagicMock(), invoice, items, deposit_percentage=Decimal('0.25'))
        self.assertEqual(invoice.deposit_amount, Decimal('155.47'))


class InvoiceStatusTests(unittest.TestCase):
    @patch('app.services.invoice_service.log_invoice_status_event')
    @patch('app.services.invoice_service.list_line_items')
    @patch('app.services.invoice_service.get_invoice')
    def test_transition_records_snapshot(self, get_invoice_mock, list_items_mock, log_event_mock) -> None:
        get_invoice_mock.return_value = _invoice()
        list_items_mock.return_value = []

        invoice = update_status(MagicMock(), 5, InvoiceStatus.PAID, actor_principal_id=2)

        self.assertEqual(invoice.status, InvoiceStatus.PAID)
        kwargs = log_event_mock.call_args.kwargs
        self.assertEqual(kwargs['from_status'], 'sent')
        self.assertEqual(kwargs['to_status'], 'paid')
        self.assertEqual(kwargs['actor_principal_id'], 2)
        self.assertEqual(kwargs['snapshot']['status'], 'paid')
        self.assertEqual(kwargs['snapshot']['total_amount'], '621.87')
        self.assertEqual(kwargs['snapshot']['line_items'], [])

    @patch('app.services.invoice_service.log_invoice_status_event')
    @patch('app.services.invoice_service.get_invoice')
    def test_terminal_statuses_reject_transitions(self, get_invoice_mock, log_event_mock) -> None:
        for status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            get_invoice_mock.return_value = _invoice(status=status)
            with self.assertRaises(ConflictError):
                update_status(MagicMock(), 5, InvoiceStatus.SENT)
        log_event_mock.assert_not_called()

    @patch('app.services.invoice_service.get_invoice')
    def test_draft_cannot_be_paid(self, get_invoice_mock) -> None:
        get_invoice_mock.return_value = _invoice(status=InvoiceStatus.DRAFT)
        with self.assertRaises(ConflictError):
            update_status(MagicMock(), 5, InvoiceStatus.PAID)


def _proposal(**overrides) -> SimpleNamespace:
    data = {
        'id': 3,
        'proposal_number': 'PROP-2025-000000003',
        'status': ProposalStatus.ACCEPTED,
        'customer_id': 7,
        'tour_date': TUESDAY,
        'party_size': 6,
        'duration_hours': Decimal('5'),
        'subtotal': Decimal('525.00'),
        'taxes': Decimal('47.78'),
        'total': Decimal('572.78'),
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def _db_without_invoice() -> MagicMock:
    db = MagicMock()
    db.execute.return_value.scalar_one_or_none.return_value = None
    return db


class InvoiceFromProposalTests(unittest.TestCase):
    @patch('app.services.invoice_service.get_proposal')
    def test_requires_accepted_proposal(self, get_proposal_mock) -> None:
        get_proposal_mock.return_value = _proposal(status=ProposalStatus.SENT)
        with self.assertRaises(ConflictError):
            create_invoice_from_proposal(MagicMock(), 3)

    @patch('app.services.invoice_service.get_proposal')
    def test_one_invoice_per_proposal(self, get_proposal_mock) -> None:
        get_proposal_mock.return_value = _proposal()
        db = MagicMock()
        db.execute.return_value.scalar_one_or_none.return_value = 11
        with self.assertRaisesRegex(ConflictError, 'already has an invoice'):
            create_invoice_from_proposal(db, 3)

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_rate_priced_proposal_becomes_hourly_invoice(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal()

        create_invoice_from_proposal(
            _db_without_invoice(),
            3,
            charges=ChargeOptionsIn(include_tip=True),
            actor_principal_id=2,
        )

        request = create_invoice_mock.call_args.args[1]
        self.assertEqual(request.pricing_model, PricingModel.HOURLY)
        self.assertEqual(request.proposal_id, 3)
        self.assertEqual(request.guest_count, 6)
        self.assertTrue(request.charges.include_tip)
        self.assertEqual(create_invoice_mock.call_args.kwargs['actor_principal_id'], 2)

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_negotiated_price_is_invoiced_as_accepted(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal(
            subtotal=Decimal('2000.00'),
            taxes=Decimal('182.00'),
            total=Decimal('2182.00'),
        )

        create_invoice_from_proposal(_db_without_invoice(), 3)

        request = create_invoice_mock.call_args.args[1]
        self.assertEqual(request.pricing_model, PricingModel.FIXED)
        self.assertEqual(request.fixed_amount, Decimal('2000.00'))
        self.assertIn('PROP-2025-000000003', request.description)
        totals = calculate_invoice_totals(build_line_items(request, get_rates()))
        self.assertEqual(totals.total_amount, Decimal('2182.00'))

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_taxes_off_the_current_rate_are_rejected(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal(
            subtotal=Decimal('2000.00'),
            taxes=Decimal('0.00'),
            total=Decimal('2000.00'),
        )
        with self.assertRaises(ConflictError):
            create_invoice_from_proposal(_db_without_invoice(), 3)
        create_invoice_mock.assert_not_called()

    def test_invoice_number_format(self) -> None:
        self.assertRegex(generate_invoice_number(date(2025, 6, 3)), r'^INV-2025-\d{9}$')


class CreateInvoiceProposalLinkTests(unittest.TestCase):
    def _request(self) -> CreateInvoiceRequest:
        return CreateInvoiceRequest(
            pricing_model='fixed',
            description='Private vineyard dinner',
            fixed_amount=1500,
            proposal_id=3,
        )

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_unknown_proposal_is_not_found(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.side_effect = NotFoundError('Proposal', 3)
        with self.assertRaises(NotFoundError):
            create_invoice(MagicMock(), self._request())
        create_invoice_mock.assert_not_called()

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_linked_proposal_must_be_accepted(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal(status=ProposalStatus.DRAFT)
        with self.assertRaises(ConflictError):
            create_invoice(MagicMock(), self._request())
        create_invoice_mock.assert_not_called()

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_linked_proposal_cannot_be_invoiced_twice(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal()
        db = MagicMock()
        db.execute.return_value.scalar_one_or_none.return_value = 11
        with self.assertRaises(ConflictError):
            create_invoice(db, self._request())
        create_invoice_mock.assert_not_called()

    @patch('app.services.invoice_service._create_invoice')
    @patch('app.services.invoice_service.get_proposal')
    def test_accepted_uninvoiced_proposal_can_be_linked(self, get_proposal_mock, create_invoice_mock) -> None:
        get_proposal_mock.return_value = _proposal()
        create_invoice(_db_without_invoice(), self._request(), actor_principal_id=2)
        create_invoice_mock.assert_called_once()


if __name__ == '__main__':
    unittest.main()
