"""
QuizMaster - Error Taxonomy
Every failure the scan-to-record pipeline can surface, grouped by stage.

  preprocessing : ImageDecodeError, EncodeError
  gateway       : ConfigurationError, AuthError, ServiceError, EmptyResponseError
  parsing       : MalformedResponseError, ValidationError
  persistence   : StorageError
"""

from typing import Optional


class QuizMasterError(Exception):
    """Base exception for all pipeline errors"""

    error_code = "QUIZMASTER_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


# ─────────────────────────────────────────────────────────
# Preprocessing
# ─────────────────────────────────────────────────────────

class PreprocessingError(QuizMasterError):
    error_code = "PREPROCESSING_ERROR"


class ImageDecodeError(PreprocessingError):
    """Source image could not be read or decoded"""

    error_code = "IMAGE_DECODE_ERROR"


class EncodeError(PreprocessingError):
    """Normalized image could not be re-encoded"""

    error_code = "ENCODE_ERROR"


# ─────────────────────────────────────────────────────────
# Gateway
# ─────────────────────────────────────────────────────────

class GatewayError(QuizMasterError):
    error_code = "GATEWAY_ERROR"


class ConfigurationError(GatewayError):
    """No credential for the extraction service"""

    error_code = "CONFIGURATION_ERROR"


class AuthError(GatewayError):
    """The extraction service rejected the credential"""

    error_code = "AUTH_ERROR"


class ServiceError(GatewayError):
    """Any other non-success answer from the service, timeouts included"""

    error_code = "SERVICE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(GatewayError):
    """The service answered without a text body"""

    error_code = "EMPTY_RESPONSE"


# ─────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────

class ParseError(QuizMasterError):
    error_code = "PARSE_ERROR"


class MalformedResponseError(ParseError):
    """No JSON object could be recovered from the response text"""

    error_code = "MALFORMED_RESPONSE"

    def __init__(self, raw_text: str, message: str = "AI response was not valid JSON"):
        super().__init__(message)
        self.raw_text = raw_text


class ValidationError(ParseError):
    """A JSON object was found but a required field is missing or mistyped"""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


# ─────────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────────

class StorageError(QuizMasterError):
    """A store operation failed and was rolled back"""

    error_code = "STORAGE_ERROR"

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Storage error during {operation}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.operation = operation
