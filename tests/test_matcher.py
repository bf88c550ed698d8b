#!/usr/bin/env python3
"""
Unit tests for registry/directory group matching.
"""

import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.matcher import (
    matches, find_matching_registry_groups, find_matching_directory_groups
)
from directory_sync.models import RegistryGroup, GroupIdentity, DirectoryGroup


class TestMatches(unittest.TestCase):
    """Test cases for matches()."""

    def setUp(self):
        self.directory_group = DirectoryGroup(email='platform@example.com', name='eng-platform')

    def test_no_identities(self):
        self.assertFalse(matches(RegistryGroup(id='g1', name='platform'), self.directory_group))

    def test_matching_provider_and_id(self):
        group = RegistryGroup(id='g1', identities=[GroupIdentity('gsuite', 'platform@example.com')])
        self.assertTrue(matches(group, self.directory_group))

    def test_other_provider(self):
        group = RegistryGroup(id='g1', identities=[GroupIdentity('github', 'platform@example.com')])
        self.assertFalse(matches(group, self.directory_group))

    def test_other_id(self):
        group = RegistryGroup(id='g1', identities=[GroupIdentity('gsuite', 'ops@example.com')])
        self.assertFalse(matches(group, self.directory_group))

    def test_any_identity_may_match(self):
        group = RegistryGroup(id='g1', identities=[
            GroupIdentity('github', 'platform'),
            GroupIdentity('gsuite', 'platform@example.com'),
        ])
        self.assertTrue(matches(group, self.directory_group))

    def test_custom_provider(self):
        group = RegistryGroup(id='g1', identities=[GroupIdentity('ldap', 'platform@example.com')])
        self.assertTrue(matches(group, self.directory_group, provider='ldap'))
        self.assertFalse(matches(group, self.directory_group))


class TestFindMatching(unittest.TestCase):
    """Test cases for the lookup helpers."""

    def test_several_registry_groups_for_one_directory_group(self):
        directory_group = DirectoryGroup(email='a@example.com', name='eng-a')
        first = RegistryGroup(id='1', identities=[GroupIdentity('gsuite', 'a@example.com')])
        other = RegistryGroup(id='2', identities=[GroupIdentity('gsuite', 'b@example.com')])
        second = RegistryGroup(id='3', identities=[GroupIdentity('gsuite', 'a@example.com')])

        found = find_matching_registry_groups([first, other, second], directory_group)

        self.assertEqual([g.id for g in found], ['1', '3'])

    def test_several_directory_groups_for_one_registry_group(self):
        registry_group = RegistryGroup(id='1', identities=[
            GroupIdentity('gsuite', 'a@example.com'),
            GroupIdentity('gsuite', 'c@example.com'),
        ])
        directory_groups = [
            DirectoryGroup(email='a@example.com', name='eng-a'),
            DirectoryGroup(email='b@example.com', name='eng-b'),
            DirectoryGroup(email='c@example.com', name='eng-c'),
        ]

        found = find_matching_directory_groups(registry_group, directory_groups)

        self.assertEqual([g.email for g in found], ['a@example.com', 'c@example.com'])


if __name__ == '__main__':
    unittest.main()
