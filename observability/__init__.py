"""Observability utilities for the mock interview service."""
from .logger import log_event

__all__ = ["log_event"]
