"""Offline edit queue reconciliation and cloud-drive mirroring."""

__version__ = "0.4.0"
