"""
Vyaapar API client.

This package contains the session core: credential storage, the shared HTTP
client, token refresh coordination and the session state machine.
"""
