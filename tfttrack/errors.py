class InvalidPayload(ValueError):
    """Malformed caller input; rejected before any work is done."""


class NotFound(LookupError):
    pass
