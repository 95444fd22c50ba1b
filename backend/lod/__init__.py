"""
Level-of-detail building blocks: grid resolution, binning, labels, radii, points and density.
"""
