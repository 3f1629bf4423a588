"""Persistence helpers: SQLModel tables, engine policy, migrations."""
