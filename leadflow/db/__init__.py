"""Async SQLAlchemy persistence for leads, events and status definitions."""
