"""Propel API: multi-tenant workspace, usage metering and billing service."""

__version__ = "0.3.0"
