#!/usr/bin/env python3
"""
Unit tests for the LDAP directory backend.

ldap3 Server and Connection are mocked; paged searches are simulated by
handing out one page of entries and a cookie per search call.
"""

import os
import sys
import threading
import unittest
from unittest.mock import Mock, patch

from ldap3.core.exceptions import LDAPSocketOpenError

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.directory import create_directory_client
from directory_sync.directory.ldap import LDAPDirectoryClient, PAGED_RESULTS_OID
from directory_sync.errors import DirectoryError
from directory_sync.models import DirectoryGroup
from directory_sync.pagination import PaginationError


def make_entry(dn, **attributes):
    entry = Mock()
    entry.entry_dn = dn
    entry.entry_attributes_as_dict = attributes
    return entry


def success_result(cookie=None):
    result = {'result': 0, 'description': 'success'}
    if cookie is not None:
        result['controls'] = {PAGED_RESULTS_OID: {'value': {'size': 0, 'cookie': cookie}}}
    return result


class FakeConnection(Mock):
    """Connection mock serving queued search pages."""

    def queue_pages(self, *pages):
        self._pages = list(pages)
        self.search.side_effect = self._serve_page

    def _serve_page(self, **kwargs):
        entries, result = self._pages.pop(0)
        self.entries = entries
        self.result = result
        return bool(entries)


class TestLDAPDirectoryClient(unittest.TestCase):
    """Test cases for LDAPDirectoryClient."""

    def setUp(self):
        self.config = {
            'server_url': 'ldaps://ldap.example.com:636',
            'bind_dn': 'CN=svc-sync,OU=Service,DC=example,DC=com',
            'bind_password': 'bind-pass',
            'group_base_dn': 'OU=Groups,DC=example,DC=com',
            'group_filter': '(objectClass=group)',
            'user_base_dn': 'OU=Users,DC=example,DC=com',
            'page_size': 2
        }
        self.retry_config = {'max_retries': 1, 'retry_wait_seconds': 0, 'retry_jitter': False}

        server_patcher = patch('directory_sync.directory.ldap.Server')
        self.mock_server_class = server_patcher.start()
        self.addCleanup(server_patcher.stop)

        connection_patcher = patch('directory_sync.directory.ldap.Connection')
        self.mock_connection_class = connection_patcher.start()
        self.addCleanup(connection_patcher.stop)
        self.connection = FakeConnection()
        self.connection.bind.return_value = True
        self.mock_connection_class.return_value = self.connection

        self.client = LDAPDirectoryClient(self.config, 'eng-', self.retry_config)

    def test_server_uses_ssl_for_ldaps(self):
        _, kwargs = self.mock_server_class.call_args
        self.assertTrue(kwargs['use_ssl'])
        self.assertIsNotNone(kwargs['tls'])

    def test_list_groups_walks_pages_and_filters_prefix(self):
        self.connection.queue_pages(
            ([make_entry('CN=eng-a,OU=Groups,DC=example,DC=com', cn=['eng-a'], mail=['a@example.com']),
              make_entry('CN=sales,OU=Groups,DC=example,DC=com', cn=['sales'], mail=['sales@example.com'])],
             success_result(cookie=b'page-2')),
            ([make_entry('CN=eng-b,OU=Groups,DC=example,DC=com', cn=['eng-b'])],
             success_result(cookie=b'')),
        )

        groups = self.client.list_groups()

        self.assertEqual(groups, [
            DirectoryGroup(email='a@example.com', name='eng-a'),
            DirectoryGroup(email='CN=eng-b,OU=Groups,DC=example,DC=com', name='eng-b'),
        ])
        first_call, second_call = self.connection.search.call_args_list
        self.assertEqual(first_call.kwargs['search_base'], 'OU=Groups,DC=example,DC=com')
        self.assertEqual(first_call.kwargs['search_filter'], '(objectClass=group)')
        self.assertEqual(first_call.kwargs['paged_size'], 2)
        self.assertIsNone(first_call.kwargs['paged_cookie'])
        self.assertEqual(second_call.kwargs['paged_cookie'], b'page-2')

    def test_get_group_members_uses_memberof(self):
        self.connection.queue_pages(
            ([make_entry('CN=eng-a,OU=Groups,DC=example,DC=com', cn=['eng-a'], mail=['a@example.com'])],
             success_result()),
            ([make_entry('CN=One,OU=Users,DC=example,DC=com', mail=['one@example.com'],
                         objectClass=['top', 'person', 'user'], userAccountControl=[512]),
              make_entry('CN=Two,OU=Users,DC=example,DC=com', mail=[],
                         objectClass=['top', 'person', 'user'], userAccountControl=[514])],
             success_result()),
        )
        group = self.client.list_groups()[0]

        members = self.client.get_group_members(group)

        member_search = self.connection.search.call_args_list[1].kwargs
        self.assertEqual(member_search['search_base'], 'OU=Users,DC=example,DC=com')
        self.assertEqual(member_search['search_filter'], '(memberOf=CN=eng-a,OU=Groups,DC=example,DC=com)')
        self.assertEqual([m.id for m in members], [
            'CN=One,OU=Users,DC=example,DC=com', 'CN=Two,OU=Users,DC=example,DC=com'
        ])
        self.assertEqual(members[0].email, 'one@example.com')
        self.assertEqual(members[0].status, 'ACTIVE')
        self.assertIsNone(members[1].email)
        self.assertEqual(members[1].status, 'SUSPENDED')

    def test_members_of_unlisted_group_looked_up_by_mail(self):
        self.connection.queue_pages(
            ([make_entry('CN=eng-a,OU=Groups,DC=example,DC=com', cn=['eng-a'])], success_result()),
            ([], success_result()),
        )

        members = self.client.get_group_members(DirectoryGroup(email='a@example.com', name='eng-a'))

        self.assertEqual(members, [])
        lookup = self.connection.search.call_args_list[0].kwargs
        self.assertEqual(lookup['search_filter'], '(&(objectClass=group)(mail=a@example.com))')

    def test_filter_values_are_escaped(self):
        self.connection.queue_pages(([], success_result()))

        self.client.get_group_members(DirectoryGroup(email='CN=R&D (x),OU=Groups,DC=example,DC=com', name='eng-rd'))

        search_filter = self.connection.search.call_args.kwargs['search_filter']
        self.assertEqual(search_filter, '(memberOf=CN=R&D \\28x\\29,OU=Groups,DC=example,DC=com)')

    def test_failed_search_raises(self):
        self.connection.queue_pages(([], {'result': 32, 'description': 'noSuchObject', 'message': ''}))

        with self.assertRaises(PaginationError) as ctx:
            self.client.list_groups()

        self.assertIsInstance(ctx.exception.cause, DirectoryError)

    def test_bind_failure_is_retried_then_raised(self):
        self.connection.bind.return_value = False
        self.connection.result = {'result': 49, 'description': 'invalidCredentials'}

        with self.assertRaises(PaginationError) as ctx:
            self.client.list_groups()

        self.assertIsInstance(ctx.exception.cause, DirectoryError)
        self.assertEqual(self.connection.bind.call_count, 2)

    def test_socket_error_becomes_directory_error(self):
        self.connection.open.side_effect = LDAPSocketOpenError("unreachable")

        with self.assertRaises(PaginationError) as ctx:
            self.client.list_groups()

        self.assertIsInstance(ctx.exception.cause, DirectoryError)

    def test_connection_per_thread_and_close(self):
        first, second = FakeConnection(), FakeConnection()
        for connection in (first, second):
            connection.bind.return_value = True
            connection.queue_pages(([], success_result()))
        self.mock_connection_class.side_effect = [first, second]
        group = DirectoryGroup(email='CN=eng-a,OU=Groups,DC=example,DC=com', name='eng-a')

        self.client.get_group_members(group)
        worker = threading.Thread(target=self.client.get_group_members, args=(group,))
        worker.start()
        worker.join()

        self.assertEqual(self.mock_connection_class.call_count, 2)

        self.client.close()
        first.unbind.assert_called_once()
        second.unbind.assert_called_once()

    def test_test_connection(self):
        self.connection.result = {'result': 0}
        self.assertTrue(self.client.test_connection())

        self.connection.result = {'result': 32}
        self.assertFalse(self.client.test_connection())

    def test_factory_selects_ldap_backend(self):
        config = {
            'directory': {'type': 'ldap', 'group_prefix': 'eng-', 'ldap': self.config},
            'error_handling': self.retry_config
        }

        client = create_directory_client(config)

        self.assertIsInstance(client, LDAPDirectoryClient)
        self.assertEqual(client.user_base_dn, 'OU=Users,DC=example,DC=com')


if __name__ == '__main__':
    unittest.main()
