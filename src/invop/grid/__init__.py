"""Minimal structured-grid collaborator: meshes, communicators, fields."""

from invop.grid.comm import MPICommunicator, SerialCommunicator
from invop.grid.field import (
    Field,
    Field2D,
    Field3D,
    FieldPerp,
    GridFieldLike,
    is_grid_field,
)
from invop.grid.mesh import FIELD_KINDS, REGIONS, Mesh

__all__ = [
    "Mesh",
    "FIELD_KINDS",
    "REGIONS",
    "SerialCommunicator",
    "MPICommunicator",
    "GridFieldLike",
    "Field",
    "Field3D",
    "Field2D",
    "FieldPerp",
    "is_grid_field",
]
