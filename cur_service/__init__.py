"""Cost-and-usage report analytics service."""
