"""Gatepass: leave request approval workflow for residential institutions."""

__version__ = "0.1.0"
