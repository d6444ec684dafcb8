"""Database layer: SQLAlchemy ORM models and sync session factory."""
