"""Persistence layer: document store contract and implementations."""
