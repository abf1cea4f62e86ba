"""Driftzo shared packages."""
