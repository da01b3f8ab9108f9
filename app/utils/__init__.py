"""
Utilities Module
================

Helper functions and utility classes.
"""

from app.utils.helpers import truncate, unique_ordered, utc_now

__all__ = ["truncate", "unique_ordered", "utc_now"]
