class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


# Credential integrity failures are not raised: the scanner returns them as an
# invalid_credential result (400) so they are audited like any other outcome.
class CheckInError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CheckInError):
    status_code = 400


class AuthenticationError(CheckInError):
    status_code = 401


class AuthorizationError(CheckInError):
    status_code = 403


class NotFoundError(CheckInError):
    status_code = 404


class ConflictError(CheckInError):
    status_code = 409


class InternalError(CheckInError):
    status_code = 500
