"""Errors raised by model client implementations"""
from typing import Optional


class ModelCallError(Exception):
    """Model invocation failed; not worth retrying"""


class ModelRateLimitError(ModelCallError):
    """Model provider throttled the request (HTTP 429)"""

    def __init__(self, message: str = "rate limited", retry_after_s: Optional[float] = None):
        super().__init__(message)
        self.retry_after_s = retry_after_s
