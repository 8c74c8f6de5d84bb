#!/usr/bin/env python3
"""
Unit tests for the membership mutator.

Covers routing by group kind, per-identity failure isolation and the
handling of changes that are already in effect.
"""

import os
import sys
import unittest
from unittest.mock import Mock

# Add parent directory to path to import group_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from group_sync.cloud.base import CloudAPIError
from group_sync.models import DirectoryGroup, DistributionGroup
from group_sync.mutator import ADD, REMOVE, MembershipMutator


class TestMembershipMutator(unittest.TestCase):
    """Test cases for MembershipMutator."""

    def setUp(self):
        """Set up mocked cloud clients."""
        self.graph = Mock()
        self.graph.find_user_id.side_effect = lambda upn: f"oid-{upn}"
        self.exchange = Mock()
        self.audit = Mock()
        self.mutator = MembershipMutator(self.graph, self.exchange, audit=self.audit)

        self.distribution = DistributionGroup(group_id='dl-1', display_name='Sales DL', mail_enabled=True)
        self.directory = DirectoryGroup(group_id='grp-1', display_name='Sales', group_types=('Unified',))

    def test_distribution_group_uses_exchange(self):
        outcome = self.mutator.apply_add(self.distribution, 'alice@corp.example.com')

        self.assertTrue(outcome.succeeded)
        self.exchange.add_distribution_group_member.assert_called_once_with('dl-1', 'alice@corp.example.com')
        self.graph.add_group_member.assert_not_called()
        self.graph.find_user_id.assert_not_called()

    def test_distribution_group_remove(self):
        outcome = self.mutator.apply_remove(self.distribution, 'carol@corp.example.com')

        self.assertTrue(outcome.succeeded)
        self.exchange.remove_distribution_group_member.assert_called_once_with('dl-1', 'carol@corp.example.com')

    def test_distribution_group_addressed_by_mail(self):
        distribution = DistributionGroup(group_id='dl-1', display_name='Sales DL',
                                         mail='sales-dl@corp.example.com', mail_enabled=True)

        self.mutator.apply_add(distribution, 'alice@corp.example.com')
        self.mutator.apply_remove(distribution, 'carol@corp.example.com')

        self.exchange.add_distribution_group_member.assert_called_once_with(
            'sales-dl@corp.example.com', 'alice@corp.example.com')
        self.exchange.remove_distribution_group_member.assert_called_once_with(
            'sales-dl@corp.example.com', 'carol@corp.example.com')

    def test_directory_group_uses_object_references(self):
        outcome = self.mutator.apply_add(self.directory, 'alice@corp.example.com')

        self.assertTrue(outcome.succeeded)
        self.graph.find_user_id.assert_called_once_with('alice@corp.example.com')
        self.graph.add_group_member.assert_called_once_with('grp-1', 'oid-alice@corp.example.com')
        self.exchange.add_distribution_group_member.assert_not_called()

    def test_directory_group_remove(self):
        self.mutator.apply_remove(self.directory, 'carol@corp.example.com')
        self.graph.remove_group_member.assert_called_once_with('grp-1', 'oid-carol@corp.example.com')

    def test_unknown_cloud_user(self):
        self.graph.find_user_id.side_effect = None
        self.graph.find_user_id.return_value = None

        outcome = self.mutator.apply_add(self.directory, 'ghost@corp.example.com')

        self.assertFalse(outcome.succeeded)
        self.assertIn('not found', outcome.error)
        self.graph.add_group_member.assert_not_called()

    def test_failure_isolated_to_one_identity(self):
        def add_member(group_id, member):
            if member == 'b@corp.example.com':
                raise CloudAPIError("HTTP 400: Couldn't find object 'b@corp.example.com'", status_code=400)

        self.exchange.add_distribution_group_member.side_effect = add_member

        outcomes = self.mutator.apply_batch(
            self.distribution, ['c@corp.example.com', 'a@corp.example.com', 'b@corp.example.com'], ADD)

        self.assertEqual([o.identity for o in outcomes],
                         ['a@corp.example.com', 'b@corp.example.com', 'c@corp.example.com'])
        self.assertEqual([o.succeeded for o in outcomes], [True, False, True])
        self.assertIn("Couldn't find object", outcomes[1].error)
        self.assertEqual(self.exchange.add_distribution_group_member.call_count, 3)

    def test_unexpected_error_isolated(self):
        self.graph.add_group_member.side_effect = [RuntimeError('boom'), None]

        outcomes = self.mutator.apply_batch(self.directory, ['a@x.com', 'b@x.com'], ADD)

        self.assertFalse(outcomes[0].succeeded)
        self.assertIn('boom', outcomes[0].error)
        self.assertTrue(outcomes[1].succeeded)

    def test_already_member_counts_as_success(self):
        self.graph.add_group_member.side_effect = CloudAPIError(
            'HTTP 400: One or more added object references already exist for the following modified properties: '
            "'members'.", status_code=400)

        outcome = self.mutator.apply_add(self.directory, 'alice@corp.example.com')

        self.assertTrue(outcome.succeeded)

    def test_distribution_already_member(self):
        self.exchange.add_distribution_group_member.side_effect = CloudAPIError(
            'HTTP 400: The recipient "alice" is already a member of the group "Sales DL".', status_code=400)
        self.assertTrue(self.mutator.apply_add(self.distribution, 'alice@corp.example.com').succeeded)

    def test_directory_remove_of_absent_member(self):
        self.graph.remove_group_member.side_effect = CloudAPIError('HTTP 404: Resource does not exist',
                                                                   status_code=404)
        self.assertTrue(self.mutator.apply_remove(self.directory, 'carol@corp.example.com').succeeded)

    def test_distribution_remove_of_absent_member(self):
        self.exchange.remove_distribution_group_member.side_effect = CloudAPIError(
            'HTTP 400: The recipient "carol" isn\'t a member of the group "Sales DL".', status_code=400)
        self.assertTrue(self.mutator.apply_remove(self.distribution, 'carol@corp.example.com').succeeded)

    def test_permission_denied_is_failure(self):
        self.graph.add_group_member.side_effect = CloudAPIError(
            'HTTP 403: Insufficient privileges to complete the operation.', status_code=403)

        outcome = self.mutator.apply_add(self.directory, 'alice@corp.example.com')

        self.assertFalse(outcome.succeeded)
        self.assertIn('Insufficient privileges', outcome.error)

    def test_every_attempt_audited(self):
        self.graph.add_group_member.side_effect = [None, CloudAPIError('HTTP 403', status_code=403)]

        self.mutator.apply_batch(self.directory, ['a@x.com', 'b@x.com'], ADD)

        calls = self.audit.log_membership_change.call_args_list
        self.assertEqual(len(calls), 2)
        self.assertTrue(calls[0][1]['success'])
        self.assertFalse(calls[1][1]['success'])
        self.assertEqual(calls[1][0][:3], (ADD, 'b@x.com', 'Sales'))

    def test_unknown_operation(self):
        with self.assertRaises(ValueError):
            self.mutator.apply_batch(self.directory, ['a@x.com'], 'replace')

    def test_empty_batch(self):
        self.assertEqual(self.mutator.apply_batch(self.directory, [], REMOVE), [])


if __name__ == '__main__':
    unittest.main()
