"""Request guards for the internal integrity endpoints."""
