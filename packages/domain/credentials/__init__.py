"""
Connector credentials - OAuth token lifecycle for upstream read connectors
"""

from packages.domain.credentials.broker import CredentialBroker, CredentialStore
from packages.domain.credentials.lifecycle import CredentialState, classify
from packages.domain.credentials.oauth_client import GoogleOAuthClient

__all__ = [
    'CredentialBroker',
    'CredentialState',
    'CredentialStore',
    'GoogleOAuthClient',
    'classify',
]
