"""
Registry API access for directory sync.
"""

from directory_sync.registry.client import (
    RegistryClient, RegistryAPIError, RegistryAuthenticationError, RegistryDecodeError
)

__all__ = ['RegistryClient', 'RegistryAPIError', 'RegistryAuthenticationError', 'RegistryDecodeError']
