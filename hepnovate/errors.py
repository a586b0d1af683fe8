"""Client-visible service errors rendered as ``{"error": message}``."""


class ServiceError(Exception):
    """Boundary failure that should reach the HTTP caller with a status code."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidInputError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class RemoteModelError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500)
