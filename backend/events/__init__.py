"""
Accident events: normalized records, CSV ingestion and the district centroid table.
"""
