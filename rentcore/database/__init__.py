"""Engine/session management and shared locking queries."""
