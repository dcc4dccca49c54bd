"""
GitHub access for Repo Monitor.

- github.py: async REST client with rate-limit tracking
- retry_strategy.py: fixed-delay retry policy for whole checks
"""

__version__ = "0.1.0"
