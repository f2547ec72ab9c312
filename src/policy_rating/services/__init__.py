"""Service layer for the rating engine."""
