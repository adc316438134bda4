"""Job handlers registered on the shared job queue."""
