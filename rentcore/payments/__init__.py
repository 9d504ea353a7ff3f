"""Payment gateway client, poll rate limiter and reconciler."""
