"""
Aggregation engine.

The engine turns a projected event dataset plus the current view state into cluster or point
descriptors, keeping label memory and layout caches between frames.
"""
