"""
AccessMap - Crowdsourced accessibility feature reports.

Report lifecycle, geospatial deduplication, photo moderation and
expiry reaping for user-submitted accessibility features.
"""

__version__ = "0.1.0"
