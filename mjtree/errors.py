"""Error types raised by the model specification tree."""


class SpecError(RuntimeError):
    """Base class for every error raised by mjtree."""
    pass


class InvalidReference(SpecError):
    """Raised when a handle is stale, foreign or of the wrong kind."""
    pass


class InvalidParent(SpecError):
    """Raised when an element is attached to a target of the wrong kind."""
    pass


class AmbiguousOrientation(SpecError):
    """Raised when more than one alternative orientation is set."""
    pass


class DegenerateOrientation(SpecError):
    """Raised when an orientation input has no defined direction."""
    pass


class InfeasibleInertia(SpecError):
    """Raised when principal moments do not describe a rigid body."""
    pass


class NameCollision(SpecError):
    """Raised when two elements of one kind share a name."""
    pass


class UnresolvedReference(SpecError):
    """Raised when a name used by another element does not resolve."""
    pass


class InvalidWrapPath(SpecError):
    """Raised when a tendon path is structurally invalid."""
    pass


ERROR_TYPES = {
    cls.__name__: cls
    for cls in (
        InvalidReference,
        InvalidParent,
        AmbiguousOrientation,
        DegenerateOrientation,
        InfeasibleInertia,
        NameCollision,
        UnresolvedReference,
        InvalidWrapPath,
    )
}
