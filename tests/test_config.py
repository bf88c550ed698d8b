#!/usr/bin/env python3
"""
Unit tests for configuration module.

This module provides unit tests for the configuration loading, validation,
and environment variable override functionality.
"""

import os
import sys
import copy
import tempfile
import yaml
import unittest
from unittest.mock import patch
from typing import Dict, Any

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.valid_config = {
            'registry': {
                'base_url': 'https://registry.example.com',
                'client_id': 'sync-client',
                'client_secret': 'client-secret'
            },
            'directory': {
                'type': 'google_workspace',
                'group_prefix': 'eng-',
                'google_workspace': {
                    'domain': 'example.com',
                    'admin_email': 'admin@example.com',
                    'credentials_file': '/secrets/sa.json'
                }
            }
        }
        self.ldap_directory = {
            'type': 'ldap',
            'group_prefix': 'eng-',
            'ldap': {
                'server_url': 'ldaps://ldap.example.com:636',
                'bind_dn': 'CN=svc-sync,DC=example,DC=com',
                'bind_password': 'bind-pass',
                'group_base_dn': 'OU=Groups,DC=example,DC=com'
            }
        }
        self.temp_files = []

    def tearDown(self):
        for path in self.temp_files:
            os.unlink(path)

    def create_test_config(self, config_data: Dict[str, Any]) -> str:
        """Create a temporary config file with the given data."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(config_data, f)
        self.temp_files.append(f.name)
        return f.name

    def test_valid_config_gets_defaults(self):
        config = load_config(self.create_test_config(self.valid_config))

        self.assertEqual(config['registry']['page_size'], 100)
        self.assertEqual(config['registry']['timeout_seconds'], 10)
        self.assertTrue(config['registry']['verify_ssl'])
        self.assertEqual(config['directory']['provider_name'], 'gsuite')
        self.assertEqual(config['directory']['concurrency'], 10)
        self.assertEqual(config['error_handling']['max_retries'], 3)
        self.assertEqual(config['error_handling']['retry_backoff'], 2.0)
        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertFalse(config['notifications']['enable_email'])

    def test_explicit_values_kept(self):
        data = copy.deepcopy(self.valid_config)
        data['directory']['concurrency'] = 3
        data['directory']['provider_name'] = 'google'

        config = load_config(self.create_test_config(data))

        self.assertEqual(config['directory']['concurrency'], 3)
        self.assertEqual(config['directory']['provider_name'], 'google')

    def test_ldap_directory_defaults(self):
        data = copy.deepcopy(self.valid_config)
        data['directory'] = self.ldap_directory

        config = load_config(self.create_test_config(data))

        ldap_config = config['directory']['ldap']
        self.assertEqual(ldap_config['group_filter'], '(objectClass=group)')
        self.assertEqual(ldap_config['page_size'], 500)
        self.assertEqual(ldap_config['user_base_dn'], 'OU=Groups,DC=example,DC=com')

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader('/nonexistent/config.yaml').load()
        self.assertIn('not found', str(ctx.exception))

    def test_invalid_yaml(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("registry: [unclosed\n")
        self.temp_files.append(f.name)

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(f.name)
        self.assertIn('Invalid YAML', str(ctx.exception))

    def test_all_missing_fields_reported(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config({'directory': {'type': 'google_workspace'}}))

        message = str(ctx.exception)
        for field in ('base_url', 'client_id', 'client_secret', 'group_prefix', 'domain', 'admin_email'):
            self.assertIn(field, message)

    def test_unknown_directory_type(self):
        data = copy.deepcopy(self.valid_config)
        data['directory']['type'] = 'okta'

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config(data))
        self.assertIn('okta', str(ctx.exception))

    def test_missing_ldap_fields(self):
        data = copy.deepcopy(self.valid_config)
        data['directory'] = {'type': 'ldap', 'group_prefix': 'eng-', 'ldap': {'server_url': 'ldap://x'}}

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config(data))

        for field in ('bind_dn', 'bind_password', 'group_base_dn'):
            self.assertIn(field, str(ctx.exception))

    def test_invalid_concurrency(self):
        data = copy.deepcopy(self.valid_config)
        data['directory']['concurrency'] = 0

        with self.assertRaises(ConfigurationError):
            load_config(self.create_test_config(data))

    def test_non_http_base_url(self):
        data = copy.deepcopy(self.valid_config)
        data['registry']['base_url'] = 'ftp://registry.example.com'

        with self.assertRaises(ConfigurationError):
            load_config(self.create_test_config(data))

    def test_email_enabled_requires_smtp_settings(self):
        data = copy.deepcopy(self.valid_config)
        data['notifications'] = {'enable_email': True}

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config(data))
        self.assertIn('smtp_server', str(ctx.exception))

    def test_environment_overrides(self):
        data = copy.deepcopy(self.valid_config)
        del data['registry']['client_secret']
        path = self.create_test_config(data)

        env = {
            'REGISTRY_CLIENT_SECRET': 'from-env',
            'DIRECTORY_GROUP_PREFIX': 'ops-',
            'GSUITE_ADMIN_EMAIL': 'other-admin@example.com',
            'GOOGLE_APPLICATION_CREDENTIALS': '/env/sa.json'
        }
        with patch.dict(os.environ, env):
            config = load_config(path)

        self.assertEqual(config['registry']['client_secret'], 'from-env')
        self.assertEqual(config['directory']['group_prefix'], 'ops-')
        self.assertEqual(config['directory']['google_workspace']['admin_email'], 'other-admin@example.com')
        self.assertEqual(config['directory']['google_workspace']['credentials_file'], '/env/sa.json')

    def test_ldap_password_from_environment(self):
        data = copy.deepcopy(self.valid_config)
        data['directory'] = copy.deepcopy(self.ldap_directory)
        del data['directory']['ldap']['bind_password']
        path = self.create_test_config(data)

        with patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'env-pass'}):
            config = load_config(path)

        self.assertEqual(config['directory']['ldap']['bind_password'], 'env-pass')

    def test_config_path_from_environment(self):
        path = self.create_test_config(self.valid_config)

        with patch.dict(os.environ, {'CONFIG_PATH': path}):
            loader = ConfigLoader()

        self.assertEqual(loader.config_path, path)


if __name__ == '__main__':
    unittest.main()
