"""Error kinds shared by the domain and application layers"""


class ValidationError(ValueError):
    """Input rejected before any mutation"""
    pass


class ConcurrencyConflict(RuntimeError):
    """A conditional update lost the race: another process already handled the row"""
    pass


class NotFoundError(LookupError):
    pass


class PermissionDenied(PermissionError):
    pass
