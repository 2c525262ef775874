"""Turning raw prospect data into stored leads."""
