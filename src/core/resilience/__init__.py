"""Retry helpers for calls to external collaborators."""

from .retry import RETRYABLE_ERRORS, retry_async

__all__ = ["RETRYABLE_ERRORS", "retry_async"]
