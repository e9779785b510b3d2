"""FastAPI transport for the advisory session engine."""
