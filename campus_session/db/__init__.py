"""SQLAlchemy engine, declarative base and models backing the durable store."""
