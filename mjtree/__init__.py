"""
mjtree - Model Specification Tree

Build a simulation model description in memory: bodies, joints, geoms and the
rest of the element tree, default classes, orientation alternatives, full
inertia and tendon paths, validated and committed by finalize.
"""

from .defaults import DefaultBundle, DefaultClass
from .elements import ElementKind, ElementRef
from .errors import (
    AmbiguousOrientation,
    DegenerateOrientation,
    InfeasibleInertia,
    InvalidParent,
    InvalidReference,
    InvalidWrapPath,
    NameCollision,
    SpecError,
    UnresolvedReference,
)
from .handlers.finalize import Diagnostic, FinalizeReport
from .options import SpecOptions
from .spec import Spec

__version__ = "0.1.0"
__all__ = [
    "Spec",
    "SpecOptions",
    "ElementKind",
    "ElementRef",
    "DefaultClass",
    "DefaultBundle",
    "Diagnostic",
    "FinalizeReport",
    "SpecError",
    "InvalidReference",
    "InvalidParent",
    "AmbiguousOrientation",
    "DegenerateOrientation",
    "InfeasibleInertia",
    "NameCollision",
    "UnresolvedReference",
    "InvalidWrapPath",
    "__version__",
]
