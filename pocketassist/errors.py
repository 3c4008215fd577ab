"""Error taxonomy shared by the mail, calendar and credential collaborators."""


class PocketAssistError(Exception):
    pass


class AuthenticationRequired(PocketAssistError):
    def __init__(self, reason: str = "Sign-in is required", *args: object) -> None:
        self.reason = reason
        super().__init__(reason, *args)


class HttpError(PocketAssistError):
    def __init__(self, status_code: int, url: str | None = None, *args: object) -> None:
        self.status_code = status_code
        self.url = url
        msg = f"HTTP request failed with status {status_code}"
        if url:
            msg += f" ({url})"
        super().__init__(msg, *args)


class RateLimited(HttpError):
    """429 from the provider; always retryable."""


class DecodingError(PocketAssistError):
    pass


class PermissionDenied(PocketAssistError):
    def __init__(self, resource: str, *args: object) -> None:
        self.resource = resource
        super().__init__(f"Access to {resource} was not granted.", *args)
