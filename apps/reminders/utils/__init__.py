"""Utility modules for the reminder engine."""
