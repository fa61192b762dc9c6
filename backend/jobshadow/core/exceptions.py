class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class LotteryPreconditionError(AppError):
    """Raised when a lottery run cannot start because its inputs are incomplete."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class LotteryJobSuperseded(Exception):
    """Raised inside a running job once its row has been replaced by a newer run."""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Lottery job {job_id} was superseded")
