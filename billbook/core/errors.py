class BillbookError(Exception):
    """Base class for errors raised by the service layer.

    Routers never translate these by hand: the handlers registered in
    ``billbook.core.observability`` turn them into the shared error envelope.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BillbookError):
    status_code = 400
    code = "bad_request"


class NotFoundError(BillbookError):
    status_code = 404
    code = "not_found"


class StorageError(BillbookError):
    status_code = 500
    code = "internal_error"
