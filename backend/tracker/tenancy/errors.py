"""
Custom exceptions for tenant resolution and scoping.
"""


class TenantNotResolved(Exception):
    """Raised when a tenant context is required but none was resolved or bound."""


class TenantInactive(Exception):
    """Raised when a tenant exists but is deactivated, suspended or deleted."""


class TenantNotFound(Exception):
    """Raised when a tenant or resource for that tenant does not exist."""


class TenantScopeViolation(Exception):
    """Raised when a read or write would cross the bound tenant."""
