"""Analysis and visualization services."""
