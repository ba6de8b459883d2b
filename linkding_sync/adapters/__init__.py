"""Adapters for external systems: the Linkding server."""
