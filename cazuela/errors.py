class CazuelaError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(CazuelaError):
    status_code = 404


class InvalidInput(CazuelaError):
    status_code = 400


class InvalidBranch(InvalidInput):
    pass


class InvalidLine(InvalidInput):
    pass


class InsufficientStock(CazuelaError):
    status_code = 400


class Conflict(CazuelaError):
    status_code = 400


class Unavailable(CazuelaError):
    status_code = 503
