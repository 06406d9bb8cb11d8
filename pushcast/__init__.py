"""Push notification dispatch and campaign scheduling service."""

__version__ = "0.1.0"
