"""
Authentication package for the Vyaapar client.

This package contains authentication-related functionality including
secure credential storage, single-flight token refresh, and session state management.
"""
