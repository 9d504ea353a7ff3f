"""Celery application, lifecycle tasks and nightly sweeps."""
