class InvalidTemplateError(ValueError):
    """A boost or protection template that cannot be activated as given."""


class PersistenceError(RuntimeError):
    """A snapshot write did not land. In-memory state is still valid."""
