"""Date and clock helpers."""
