"""Custom exceptions raised by the indexing engine."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ConfigurationException(AppException):
    """The engine was asked to do something its current configuration forbids."""


class ApiException(AppException):
    """A call to the search engine failed at the protocol level."""

    def __init__(self, message: str, status_code: int, response: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class InvalidBulkRequestPartError(AppException):
    """Something other than a bulk request part ended up in the bulk buffer."""

    def __init__(self, message: str = "Invalid bulk request part"):
        super().__init__(message)
