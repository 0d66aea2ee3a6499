"""Monitoring and observability package."""
from .logging import app_context_processor, setup_logging
from .metrics import metrics

__all__ = ["app_context_processor", "metrics", "setup_logging"]
