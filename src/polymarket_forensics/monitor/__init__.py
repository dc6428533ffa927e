"""Live trade monitoring."""
