"""recordhistory Generators - Alembic migrations for history tables."""
