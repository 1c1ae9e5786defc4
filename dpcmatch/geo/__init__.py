"""
Geospatial math for DPCMatch.

Great-circle distances, bounding boxes and radius search over provider
coordinates.
"""
