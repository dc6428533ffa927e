"""Polymarket Forensics - informed-trading analysis for Polymarket fills."""

__version__ = "0.1.0"
