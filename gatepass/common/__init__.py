"""Common utilities for gatepass."""

from .logger import setup_logger
from .config import load_config, load_workflow_config

__all__ = ["load_config", "load_workflow_config", "setup_logger"]
