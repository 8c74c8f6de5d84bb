#!/usr/bin/env python3
"""
Unit tests for identity normalization and delta calculation.
"""

import os
import sys
import unittest

# Add parent directory to path to import group_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from group_sync.identity import IdentitySet, normalize_identity
from group_sync.delta import MembershipDelta, compute_delta


class TestNormalizeIdentity(unittest.TestCase):
    """Test cases for normalize_identity."""

    def test_lower_cases_and_strips(self):
        self.assertEqual(normalize_identity('  Alice@Corp.Example.COM '), 'alice@corp.example.com')

    def test_rejects_empty_values(self):
        for value in ['', '   ', None]:
            with self.assertRaises(ValueError):
                normalize_identity(value)


class TestIdentitySet(unittest.TestCase):
    """Test cases for IdentitySet."""

    def test_case_variants_collapse(self):
        identities = IdentitySet(['Alice@corp.com', 'ALICE@CORP.COM', 'alice@corp.com'])
        self.assertEqual(len(identities), 1)
        self.assertEqual(list(identities), ['alice@corp.com'])

    def test_membership_is_case_insensitive(self):
        identities = IdentitySet(['bob@corp.com'])
        self.assertIn('BOB@corp.com', identities)
        self.assertNotIn('carol@corp.com', identities)
        self.assertNotIn('', identities)
        self.assertNotIn(None, identities)

    def test_add_reports_new_entries(self):
        identities = IdentitySet()
        self.assertTrue(identities.add('Dave@corp.com'))
        self.assertFalse(identities.add('dave@CORP.com'))
        self.assertEqual(len(identities), 1)

    def test_add_rejects_blank(self):
        with self.assertRaises(ValueError):
            IdentitySet().add('  ')

    def test_set_algebra_returns_identity_sets(self):
        left = IdentitySet(['a@x.com', 'b@x.com'])
        right = IdentitySet(['B@x.com', 'c@x.com'])
        difference = left - right
        self.assertIsInstance(difference, IdentitySet)
        self.assertEqual(difference, {'a@x.com'})
        self.assertEqual(left & right, {'b@x.com'})
        self.assertEqual(left | right, {'a@x.com', 'b@x.com', 'c@x.com'})

    def test_sorted_is_stable(self):
        identities = IdentitySet(['zed@x.com', 'Amy@x.com', 'mia@x.com'])
        self.assertEqual(identities.sorted(), ['amy@x.com', 'mia@x.com', 'zed@x.com'])


class TestComputeDelta(unittest.TestCase):
    """Test cases for compute_delta."""

    def test_end_to_end_scenario(self):
        source = IdentitySet(['alice@corp.com', 'bob@corp.com'])
        cloud = IdentitySet(['bob@corp.com', 'carol@corp.com'])

        delta = compute_delta(source, cloud)

        self.assertIsInstance(delta, MembershipDelta)
        self.assertEqual(delta.to_add, {'alice@corp.com'})
        self.assertEqual(delta.to_remove, {'carol@corp.com'})

        # After applying the delta the cloud matches the source
        cloud_after = (cloud - delta.to_remove) | delta.to_add
        self.assertEqual(cloud_after, source)
        self.assertTrue(compute_delta(source, cloud_after).is_empty)

    def test_identical_sets_yield_empty_delta(self):
        members = IdentitySet(['a@x.com', 'b@x.com', 'c@x.com'])
        delta = compute_delta(members, members)
        self.assertEqual(len(delta.to_add), 0)
        self.assertEqual(len(delta.to_remove), 0)
        self.assertTrue(delta.is_empty)

    def test_delta_partitions_symmetric_difference(self):
        cases = [
            (['a', 'b', 'c'], ['b', 'c', 'd']),
            ([], ['x', 'y']),
            (['x', 'y'], []),
            (['A', 'b'], ['a', 'B']),
            ([f'user{i}' for i in range(50)], [f'user{i}' for i in range(25, 80)]),
        ]
        for source_values, cloud_values in cases:
            with self.subTest(source=source_values, cloud=cloud_values):
                source = IdentitySet(source_values)
                cloud = IdentitySet(cloud_values)
                delta = compute_delta(source, cloud)

                self.assertEqual(set(delta.to_add) & set(delta.to_remove), set())
                self.assertEqual(set(delta.to_add) | set(delta.to_remove),
                                 set(source) ^ set(cloud))
                self.assertTrue(all(identity in source for identity in delta.to_add))
                self.assertTrue(all(identity in cloud for identity in delta.to_remove))

    def test_case_only_differences_are_untouched(self):
        delta = compute_delta(IdentitySet(['Alice@Corp.com']), IdentitySet(['alice@corp.COM']))
        self.assertTrue(delta.is_empty)

    def test_inputs_are_not_modified(self):
        source = IdentitySet(['a@x.com'])
        cloud = IdentitySet(['b@x.com'])
        compute_delta(source, cloud)
        self.assertEqual(source, {'a@x.com'})
        self.assertEqual(cloud, {'b@x.com'})


if __name__ == '__main__':
    unittest.main()
