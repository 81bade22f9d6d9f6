"""Shared chain / IO layer for Noether bots (settings, gateway, logging)."""

__version__ = "0.2.0"
