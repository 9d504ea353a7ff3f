"""Invoice pricing and the monthly invoice generator."""
