"""
Store pickup availability monitor.

This package polls the retailer's pickup-availability endpoints for each
configured product/location row, de-duplicates availability messages per
store and posts webhook notifications.  See README.md for details.
"""

__all__ = [
    "client",
    "config",
    "dedup",
    "evaluator",
    "main",
    "models",
    "notifier",
    "proxies",
    "utils",
]
