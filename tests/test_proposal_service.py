from __future__ import annotations

import re
import unittest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from app.errors import ConflictError, ValidationError
from app.models import Proposal, ProposalStatus
from app.schemas import CreateProposalRequest
from app.services.proposal_service import (
    create_proposal,
    generate_proposal_number,
    get_statistics,
    respond_to_proposal,
    update_proposal,
    update_status,
)
from app.services.pricing_modifier_service import PricingModifier
from app.services.rate_config_service import get_rates


def _request(**overrides) -> CreateProposalRequest:
    data = {
        'customer_name': 'Jordan Ellis',
        'customer_email': 'Jordan@Example.com',
        'customer_phone': '5095550100',
        'party_size': 4,
        'tour_date': date(2025, 6, 3),
        'duration_hours': Decimal('6'),
    }
    data.update(overrides)
    return CreateProposalRequest(**data)


class CreateProposalTests(unittest.TestCase):
    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_or_create_customer')
    @patch('app.services.proposal_service.load_rate_config')
    def test_prices_from_rate_tables_when_amounts_omitted(
        self,
        load_rate_config_mock,
        get_customer_mock,
        log_activity_mock,
    ) -> None:
        load_rate_config_mock.return_value = get_rates()
        get_customer_mock.return_value = SimpleNamespace(id=7)
        db = MagicMock()

        proposal = create_proposal(db, _request(), today=date(2025, 5, 1))

        self.assertIsInstance(proposal, Proposal)
        self.assertEqual(proposal.subtotal, Decimal('570.00'))
        self.assertEqual(proposal.taxes, Decimal('51.87'))
        self.assertEqual(proposal.total, Decimal('621.87'))
        self.assertEqual(proposal.customer_id, 7)
        self.assertEqual(proposal.customer_email, 'jordan@example.com')
        self.assertEqual(proposal.valid_until, date(2025, 5, 31))
        self.assertEqual(proposal.status, ProposalStatus.DRAFT)
        db.add.assert_called_once_with(proposal)
        self.assertEqual(log_activity_mock.call_args.kwargs['activity_type'], 'created')

    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_or_create_customer')
    @patch('app.services.proposal_service.load_pricing_modifiers')
    @patch('app.services.proposal_service.load_rate_config')
    def test_auto_pricing_applies_active_modifiers(
        self,
        load_rate_config_mock,
        load_modifiers_mock,
        get_customer_mock,
        log_activity_mock,
    ) -> None:
        load_rate_config_mock.return_value = get_rates()
        load_modifiers_mock.return_value = [
            PricingModifier(
                name='Early bird',
                modifier_type='early_bird',
                value_type='percentage',
                value=Decimal('10'),
                min_advance_days=30,
            )
        ]
        get_customer_mock.return_value = SimpleNamespace(id=7)
        db = MagicMock()

        proposal = create_proposal(db, _request(), today=date(2025, 5, 1))

        self.assertEqual(proposal.subtotal, Decimal('513.00'))
        self.assertEqual(proposal.taxes, Decimal('46.68'))
        self.assertEqual(proposal.total, Decimal('559.68'))
        load_modifiers_mock.assert_called_once_with(db, on_date=date(2025, 6, 3))

    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_or_create_customer')
    def test_explicit_amounts_must_add_up(self, get_customer_mock, log_activity_mock) -> None:
        get_customer_mock.return_value = SimpleNamespace(id=7)
        request = _request(subtotal=Decimal('500'), taxes=Decimal('45.50'), total=Decimal('600'))
        with self.assertRaises(ValidationError):
            create_proposal(MagicMock(), request, today=date(2025, 5, 1))

    def test_valid_until_cannot_be_in_the_past(self) -> None:
        request = _request(valid_until=date(2025, 4, 1))
        with self.assertRaises(ValidationError):
            create_proposal(MagicMock(), request, today=date(2025, 5, 1))

    def test_partial_amounts_rejected_by_request_model(self) -> None:
        with self.assertRaises(ValueError):
            _request(subtotal=Decimal('500'))

    def test_proposal_number_format(self) -> None:
        number = generate_proposal_number(date(2025, 5, 1))
        self.assertRegex(number, re.compile(r'^PROP-2025-\d{9}$'))


class ProposalStatusTests(unittest.TestCase):
    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_proposal')
    def test_draft_can_be_sent(self, get_proposal_mock, log_activity_mock) -> None:
        proposal = SimpleNamespace(id=1, status=ProposalStatus.DRAFT, updated_at=None)
        get_proposal_mock.return_value = proposal

        result = update_status(MagicMock(), 1, ProposalStatus.SENT, actor_principal_id=3)

        self.assertEqual(result.status, ProposalStatus.SENT)
        kwargs = log_activity_mock.call_args.kwargs
        self.assertEqual(kwargs['activity_type'], 'status_change')
        self.assertEqual(kwargs['notes'], 'Status changed from draft to sent')
        self.assertEqual(kwargs['actor_principal_id'], 3)

    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_proposal')
    def test_draft_cannot_be_accepted(self, get_proposal_mock, log_activity_mock) -> None:
        get_proposal_mock.return_value = SimpleNamespace(id=1, status=ProposalStatus.DRAFT, updated_at=None)
        with self.assertRaises(ConflictError):
            update_status(MagicMock(), 1, ProposalStatus.ACCEPTED)
        log_activity_mock.assert_not_called()

    @patch('app.services.proposal_service.get_proposal')
    def test_terminal_proposals_are_final(self, get_proposal_mock) -> None:
        for status in (ProposalStatus.ACCEPTED, ProposalStatus.DECLINED, ProposalStatus.EXPIRED):
            get_proposal_mock.return_value = SimpleNamespace(id=1, status=status, updated_at=None)
            with self.assertRaises(ConflictError):
                update_status(MagicMock(), 1, ProposalStatus.SENT)

    @patch('app.services.proposal_service.update_status')
    @patch('app.services.proposal_service.get_proposal_by_number')
    def test_past_due_proposal_expires_instead_of_accepting(self, get_by_number_mock, update_status_mock) -> None:
        proposal = SimpleNamespace(id=3, status=ProposalStatus.SENT, valid_until=date(2025, 1, 1))
        get_by_number_mock.return_value = proposal
        db = MagicMock()

        result = respond_to_proposal(db, 'PROP-2025-000000001', accept=True, today=date(2025, 2, 1))

        self.assertIs(result, proposal)
        update_status_mock.assert_called_once_with(db, 3, ProposalStatus.EXPIRED)

    @patch('app.services.proposal_service.update_status')
    @patch('app.services.proposal_service.get_proposal_by_number')
    def test_viewed_proposal_can_be_declined(self, get_by_number_mock, update_status_mock) -> None:
        get_by_number_mock.return_value = SimpleNamespace(
            id=4,
            status=ProposalStatus.VIEWED,
            valid_until=date(2025, 3, 1),
        )
        db = MagicMock()
        respond_to_proposal(db, 'PROP-2025-000000002', accept=False, today=date(2025, 2, 1))
        update_status_mock.assert_called_once_with(db, 4, ProposalStatus.DECLINED)


class UpdateProposalTests(unittest.TestCase):
    def test_unknown_fields_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            update_proposal(MagicMock(), 1, {'status': 'accepted'})

    @patch('app.services.proposal_service.get_proposal')
    def test_required_fields_cannot_be_cleared(self, get_proposal_mock) -> None:
        for field in ('subtotal', 'party_size', 'tour_date'):
            with self.assertRaises(ValidationError):
                update_proposal(MagicMock(), 1, {field: None})
        get_proposal_mock.assert_not_called()

    @patch('app.services.proposal_service.log_proposal_activity')
    @patch('app.services.proposal_service.get_proposal')
    def test_notes_can_be_cleared(self, get_proposal_mock, log_activity_mock) -> None:
        proposal = SimpleNamespace(
            id=1,
            status=ProposalStatus.DRAFT,
            subtotal=Decimal('570.00'),
            taxes=Decimal('51.87'),
            total=Decimal('621.87'),
            notes='Old note',
            updated_at=None,
        )
        get_proposal_mock.return_value = proposal
        update_proposal(MagicMock(), 1, {'notes': None})
        self.assertIsNone(proposal.notes)

    @patch('app.services.proposal_service.get_proposal')
    def test_closed_proposals_cannot_be_edited(self, get_proposal_mock) -> None:
        get_proposal_mock.return_value = SimpleNamespace(id=1, status=ProposalStatus.ACCEPTED)
        with self.assertRaises(ConflictError):
            update_proposal(MagicMock(), 1, {'notes': 'Add a picnic stop'})


class StatisticsTests(unittest.TestCase):
    def test_conversion_rate_uses_sent_proposals(self) -> None:
        db = MagicMock()
        db.execute.return_value.one.return_value = SimpleNamespace(
            total_proposals=10,
            sent_proposals=4,
            accepted_proposals=2,
            declined_proposals=1,
            avg_value=Decimal('612.345'),
        )

        stats = get_statistics(db)

        self.assertEqual(stats['total_proposals'], 10)
        self.assertEqual(stats['conversion_rate'], 0.5)
        self.assertEqual(stats['average_value'], '612.35')

    def test_empty_statistics(self) -> None:
        db = MagicMock()
        db.execute.return_value.one.return_value = SimpleNamespace(
            total_proposals=0,
            sent_proposals=None,
            accepted_proposals=None,
            declined_proposals=None,
            avg_value=None,
        )
        stats = get_statistics(db, start_date=date(2025, 1, 1), end_date=date(2025, 1, 31))
        self.assertEqual(stats['conversion_rate'], 0.0)
        self.assertEqual(stats['average_value'], '0.00')


if __name__ == '__main__':
    unittest.main()
