"""Import and reconciliation services."""
