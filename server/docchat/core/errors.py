class NotFoundError(Exception):
    """Resource is missing or owned by someone else; the two cases are not distinguished."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class InvalidInputError(Exception):
    pass


class ExtractionError(Exception):
    pass


class StorageError(Exception):
    pass


class InferenceError(Exception):
    pass


class AuthenticationError(Exception):
    """Bearer token is missing, expired or does not resolve to a user."""


class AuthServiceError(Exception):
    pass
