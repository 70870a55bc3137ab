"""Core workflow engine for Gatepass."""
