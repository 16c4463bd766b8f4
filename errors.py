"""Domain errors. The route layer maps them to HTTP responses by ``status_code``."""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(MarketplaceError):
    status_code = 404


class AccessDenied(MarketplaceError):
    status_code = 403


class ValidationFailure(MarketplaceError):
    status_code = 400


class UpstreamStoreFailure(MarketplaceError):
    status_code = 500
