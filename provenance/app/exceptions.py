class NotFoundError(ValueError):
    """A product, slot or user referenced by the caller does not exist."""


class ConflictError(ValueError):
    """The request collides with existing state, e.g. a duplicate product id or a chain head that moved."""
