"""Remote client adapters.

This package contains concrete implementations of the RemoteClient interface:
the production HTTP client and an in-memory service for tests and demos.
"""

from .http_client import HttpRemoteClient, MedicationAPI
from .memory import InMemoryRemoteClient

__all__ = ['HttpRemoteClient', 'MedicationAPI', 'InMemoryRemoteClient']
