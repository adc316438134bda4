"""Distribution modeling service."""
