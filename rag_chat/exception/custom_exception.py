from typing import Optional

# String codes carried in the error envelope so clients can branch on them
ERROR_CODES = {
    # Auth errors
    "UNAUTHORIZED": "UNAUTHORIZED",
    "FORBIDDEN": "FORBIDDEN",
    # Validation errors
    "VALIDATION_ERROR": "VALIDATION_ERROR",
    "INVALID_INPUT": "INVALID_INPUT",
    # Resource errors
    "NOT_FOUND": "NOT_FOUND",
    "CONVERSATION_NOT_FOUND": "CONVERSATION_NOT_FOUND",
    "DOCUMENT_NOT_FOUND": "DOCUMENT_NOT_FOUND",
    "MESSAGE_NOT_FOUND": "MESSAGE_NOT_FOUND",
    # Business logic errors
    "MESSAGE_REQUIRED": "MESSAGE_REQUIRED",
    "FILE_REQUIRED": "FILE_REQUIRED",
    "FILE_TYPE_NOT_SUPPORTED": "FILE_TYPE_NOT_SUPPORTED",
    "FILE_TOO_LARGE": "FILE_TOO_LARGE",
    # External service errors
    "OPENAI_ERROR": "OPENAI_ERROR",
    "EMBEDDING_ERROR": "EMBEDDING_ERROR",
    # Server errors
    "INTERNAL_ERROR": "INTERNAL_ERROR",
}


class RagChatException(Exception):
    """
    Application error with an HTTP status and an optional machine-readable code.

    Raised from services and routers; the API error handler turns it into the
    standard error envelope.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class NotFoundError(RagChatException):
    def __init__(self, message: str, code: str = ERROR_CODES["NOT_FOUND"]):
        super().__init__(message, status_code=404, code=code)


class AuthenticationError(RagChatException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=401, code=ERROR_CODES["UNAUTHORIZED"])
