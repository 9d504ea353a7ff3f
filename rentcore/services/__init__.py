"""Domain services operating on one SQLAlchemy session."""
