"""Database layer: engine, sessions, ORM models and Redis client."""
