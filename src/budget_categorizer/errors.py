class CategorizerError(Exception):
    """Base class for errors raised by the categorization service."""

    status_code = 500
    public_message = "Internal error"


class AuthorizationError(CategorizerError):
    status_code = 401
    public_message = "Unauthorized"


class ValidationError(CategorizerError):
    status_code = 400
    public_message = "Invalid request payload"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


class NotFoundError(CategorizerError):
    status_code = 404
    public_message = "Not found"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


class RunInProgressError(CategorizerError):
    status_code = 409
    public_message = "A run is already in progress"


class StageFailure(CategorizerError):
    """A single matching stage failed for a single transaction."""

    def __init__(self, stage: str, transaction_id: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed for transaction {transaction_id}: {cause}")
        self.stage = stage
        self.transaction_id = transaction_id
        self.cause = cause


class RunFailure(CategorizerError):
    """A whole run was aborted. Partial stats have already been persisted."""

    public_message = "Categorization failed"

    def __init__(
        self,
        message: str,
        *,
        stats: object | None = None,
        public_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stats = stats
        if public_message:
            self.public_message = public_message
