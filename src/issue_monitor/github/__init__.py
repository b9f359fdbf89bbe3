"""
GitHub Layer - API client used by the health probes.

This module provides:
    - GitHubStatusClient: rate-limit status and authenticated identity
    - RateLimitStatus: Core REST quota snapshot
    - GitHubAPIError / AuthenticationError: API failures with status_code
"""

from .client import (
    AuthenticationError,
    GitHubAPIError,
    GitHubStatusClient,
    RateLimitStatus,
)

__all__ = [
    "GitHubStatusClient",
    "RateLimitStatus",
    "GitHubAPIError",
    "AuthenticationError",
]
