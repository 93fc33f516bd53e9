class WalkthroughException(Exception):
    pass


class InvalidRequest(WalkthroughException):
    """A required argument was missing or malformed; nothing was sent to the cluster."""


class ProvisionError(WalkthroughException):
    """The cluster rejected a create or query operation."""


class TemplateError(WalkthroughException):
    """A manifest template rendered to unparsable or incomplete output."""


class StreamError(WalkthroughException):
    """A watch stream ended without a clean CLOSED."""


class NotFoundException(WalkthroughException):
    pass


class AlreadyExistsException(WalkthroughException):
    pass


class BackendError(WalkthroughException):
    def __init__(self, *, status: int, url: str, body: str) -> None:
        super().__init__(f"Walkthrough backend HTTP {status}: {url} :: {body[:500]}")
        self.status = status
        self.url = url
        self.body = body
