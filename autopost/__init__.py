"""Recurring content publication to WordPress sites on a per-site cadence."""

__version__ = "0.1.0"
