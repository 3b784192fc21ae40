"""Error kinds raised by the document tree manager."""


class TreeError(Exception):
    """Base class for every error the tree manager surfaces."""


class TransportError(TreeError):
    """The store was unreachable or reported a failure."""


class ValidationError(TreeError):
    """Illegal name, illegal move target or duplicate sibling folder name."""


class CycleError(ValidationError):
    """The requested move would place a node inside its own subtree."""


class NotFoundError(ValidationError):
    """The referenced node is no longer present (or was never known)."""
