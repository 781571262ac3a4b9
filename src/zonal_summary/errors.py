"""Exception types raised by the zonal summary engine."""

from __future__ import annotations


class ZonalError(Exception):
    """Base class for all engine errors."""


class GeometryError(ZonalError):
    """A feature geometry is empty-typed, invalid, or not polygonal."""


class GridMismatchError(ZonalError):
    """A secondary raster does not share the primary raster's grid."""


class SchemaMismatchError(ZonalError):
    """A table-returning operation produced different columns across features."""
