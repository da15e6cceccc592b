"""Geodesic primitives, the location access guard and proximity search."""
