"""Household budget assistant API."""
