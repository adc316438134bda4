"""Distribution modeling service application."""
