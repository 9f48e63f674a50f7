"""Voters registry: one vote per verified identity, live country rankings."""

__version__ = '1.0.0'
