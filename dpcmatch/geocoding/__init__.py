"""
Geocoding for DPCMatch.

Resolves ZIP codes to centroids (and points back to places) through
external services, behind a TTL cache and a daily request budget.
"""
