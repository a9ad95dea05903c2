#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers loading, defaults, validation and the password environment override.
"""

import os
import sys
import json
import shutil
import tempfile
import dataclasses
import yaml
import unittest
from unittest.mock import patch

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adsync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp(prefix='adsync_config_')
        self.valid_config = {
            'activedirectory': {
                'host': 'dc01.example.com',
                'domain': 'EXAMPLE',
                'username': 'svc-adsync',
                'password': 'secret',
                'userdn': 'OU=Staff,DC=example,DC=com',
                'groupdn': 'OU=Groups,DC=example,DC=com',
                'group': 'All Staff'
            },
            'logging': {
                'enabled': True,
                'location': '/var/log/adsync'
            }
        }

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, content, name='config.yaml'):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w') as f:
            if isinstance(content, str):
                f.write(content)
            else:
                yaml.safe_dump(content, f)
        return path

    def test_load_valid_config(self):
        """Test loading a complete configuration file."""
        config = load_config(self._write(self.valid_config))

        directory = config.activedirectory
        self.assertEqual(directory.host, 'dc01.example.com')
        self.assertEqual(directory.port, 389)
        self.assertEqual(directory.bind_user, 'EXAMPLE\\svc-adsync')
        self.assertEqual(directory.server_url, 'ldap://dc01.example.com:389')
        self.assertEqual(directory.group_dn, 'cn=All Staff,OU=Groups,DC=example,DC=com')
        self.assertTrue(config.logging.enabled)
        self.assertEqual(config.logging.location, '/var/log/adsync')

    def test_defaults_applied(self):
        """Test defaults for host and the logging section."""
        del self.valid_config['activedirectory']['host']
        del self.valid_config['logging']

        config = load_config(self._write(self.valid_config))

        self.assertEqual(config.activedirectory.host, '127.0.0.1')
        self.assertFalse(config.logging.enabled)
        self.assertEqual(config.logging.location, '.')
        self.assertEqual(config.logging.level, 'INFO')
        self.assertFalse(config.logging.console)

    def test_json_config_accepted(self):
        """Test that a JSON config file loads as well."""
        path = os.path.join(self.temp_dir, 'config.json')
        with open(path, 'w') as f:
            json.dump(self.valid_config, f)

        config = load_config(path)
        self.assertEqual(config.activedirectory.group, 'All Staff')

    def test_config_is_immutable(self):
        """Test that the loaded configuration cannot be modified."""
        config = load_config(self._write(self.valid_config))

        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.activedirectory.host = 'other'

    def test_missing_file(self):
        """Test error on missing configuration file."""
        with self.assertRaises(ConfigurationError) as context:
            load_config(os.path.join(self.temp_dir, 'nonexistent.yaml'))
        self.assertIn("Configuration file not found", str(context.exception))

    def test_corrupt_yaml(self):
        """Test error on unparseable file."""
        path = self._write("activedirectory: [unclosed\n")
        with self.assertRaises(ConfigurationError) as context:
            load_config(path)
        self.assertIn("corrupt", str(context.exception))

    def test_non_mapping_document(self):
        """Test error when the document is not a mapping."""
        path = self._write("- just\n- a list\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_missing_required_fields_reported_together(self):
        """Test that all missing directory fields are listed."""
        del self.valid_config['activedirectory']['userdn']
        del self.valid_config['activedirectory']['group']

        with self.assertRaises(ConfigurationError) as context:
            load_config(self._write(self.valid_config))

        message = str(context.exception)
        self.assertIn("userdn", message)
        self.assertIn("group", message)

    def test_invalid_logging_flag(self):
        """Test that logging.enabled must be a boolean."""
        self.valid_config['logging']['enabled'] = 'sometimes'

        with self.assertRaises(ConfigurationError) as context:
            load_config(self._write(self.valid_config))
        self.assertIn("logging.enabled", str(context.exception))

    def test_invalid_port(self):
        """Test that a non-integer port is rejected."""
        self.valid_config['activedirectory']['port'] = 'ldap'

        with self.assertRaises(ConfigurationError) as context:
            load_config(self._write(self.valid_config))
        self.assertIn("port", str(context.exception))

    @patch.dict(os.environ, {'ADSYNC_PASSWORD': 'from-env'})
    def test_password_env_override(self):
        """Test that ADSYNC_PASSWORD replaces the file password."""
        config = load_config(self._write(self.valid_config))
        self.assertEqual(config.activedirectory.password, 'from-env')

    @patch.dict(os.environ, {'ADSYNC_PASSWORD': 'from-env'})
    def test_password_only_from_env(self):
        """Test that the password may be absent from the file."""
        del self.valid_config['activedirectory']['password']
        config = load_config(self._write(self.valid_config))
        self.assertEqual(config.activedirectory.password, 'from-env')

    def test_config_path_from_env(self):
        """Test ADSYNC_CONFIG selects the file when no path is given."""
        path = self._write(self.valid_config, name='custom.yaml')
        with patch.dict(os.environ, {'ADSYNC_CONFIG': path}):
            loader = ConfigLoader()
        self.assertEqual(loader.config_path, path)

    def test_mixed_case_keys_accepted(self):
        """Test a JSON file keyed like ActiveDirectory/UserDN/Logging.Enabled loads."""
        path = os.path.join(self.temp_dir, 'config.json')
        with open(path, 'w') as f:
            json.dump({
                'ActiveDirectory': {
                    'Host': 'dc01.example.com',
                    'Domain': 'EXAMPLE',
                    'Username': 'svc-adsync',
                    'Password': 'secret',
                    'UserDN': 'OU=Staff,DC=example,DC=com',
                    'GroupDN': 'OU=Groups,DC=example,DC=com',
                    'Group': 'All Staff'
                },
                'Logging': {'Enabled': True, 'Location': '/var/log/adsync'}
            }, f)

        config = load_config(path)

        self.assertEqual(config.activedirectory.host, 'dc01.example.com')
        self.assertEqual(config.activedirectory.userdn, 'OU=Staff,DC=example,DC=com')
        self.assertEqual(config.activedirectory.groupdn, 'OU=Groups,DC=example,DC=com')
        self.assertEqual(config.activedirectory.group, 'All Staff')
        self.assertTrue(config.logging.enabled)
        self.assertEqual(config.logging.location, '/var/log/adsync')

    @patch.dict(os.environ, {'ADSYNC_PASSWORD': 'from-env'})
    def test_env_override_with_mixed_case_keys(self):
        self.valid_config['ActiveDirectory'] = self.valid_config.pop('activedirectory')
        self.valid_config['ActiveDirectory']['Password'] = self.valid_config['ActiveDirectory'].pop('password')

        config = load_config(self._write(self.valid_config))
        self.assertEqual(config.activedirectory.password, 'from-env')

    def test_unknown_log_level_rejected(self):
        """Test that logging.level must name a standard level."""
        for level in ('FOO', 'root'):
            self.valid_config['logging']['level'] = level
            with self.assertRaises(ConfigurationError) as context:
                load_config(self._write(self.valid_config))
            self.assertIn("logging.level", str(context.exception))

    def test_log_level_case_insensitive(self):
        self.valid_config['logging']['level'] = 'debug'
        config = load_config(self._write(self.valid_config))
        self.assertEqual(config.logging.level, 'DEBUG')

    def test_group_name_escaped_in_dn(self):
        """Test that special characters in the group name are escaped."""
        self.valid_config['activedirectory']['group'] = 'Sales, EMEA'
        config = load_config(self._write(self.valid_config))
        self.assertEqual(config.activedirectory.group_dn,
                         'cn=Sales\\, EMEA,OU=Groups,DC=example,DC=com')


if __name__ == '__main__':
    unittest.main()
