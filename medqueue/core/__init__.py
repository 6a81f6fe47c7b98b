"""Core components of the MedQueue client.

This package holds the transport-independent parts of the client: domain models,
the reconciliation engine, correlated commands, the wait-time countdown, the HTTP
API client and user-visible notifications.
"""
