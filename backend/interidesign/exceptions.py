from fastapi import status


class AuthError(Exception):
    """Base for every authentication failure surfaced to the client as {message, code}."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "auth_error"
    default_message: str = "Authentication failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_credentials"
    default_message = "Invalid username or password"


class DuplicateUsername(AuthError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_username"
    default_message = "Username already exists"


class DuplicateEmail(AuthError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_email"
    default_message = "Email already exists"


class IdentityConflict(AuthError):
    status_code = status.HTTP_409_CONFLICT
    code = "identity_conflict"
    default_message = "This account is already linked to a different provider identity"


class ProviderVerificationFailed(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "provider_verification_failed"
    default_message = "Could not verify identity with the provider"


class ProviderNotConfigured(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "provider_not_configured"
    default_message = "This sign-in method is not configured"


class NotAuthenticated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "not_authenticated"
    default_message = "Not authenticated"


class SessionExpired(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "session_expired"
    default_message = "Your session has expired. Please sign in again."


class Unauthorized(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"
    default_message = "You do not have permission to access this resource"


# Lets the client map an error body back onto the exception type
ERRORS_BY_CODE: dict[str, type[AuthError]] = {
    cls.code: cls
    for cls in (
        InvalidCredentials,
        DuplicateUsername,
        DuplicateEmail,
        IdentityConflict,
        ProviderVerificationFailed,
        ProviderNotConfigured,
        NotAuthenticated,
        SessionExpired,
        Unauthorized,
    )
}
