"""Exceptions raised by the remote GitHub source."""


class RemoteSourceError(Exception):
    """A single remote request failed (transport error or unexpected status).

    Scoped to one entity request; callers log it and carry on with siblings.
    """

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        self.message = message
        self.status_code = status_code
        self.url = url
        super().__init__(message)
