"""Wallet profiling - Account aggregates and point-in-time state."""
