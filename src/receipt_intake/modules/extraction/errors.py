from __future__ import annotations


class ReceiptIntakeError(RuntimeError):
    """Base for every failure the extraction pipeline surfaces to its caller.

    `code` is stable and safe to hand to API clients; `message` is human readable.
    """

    code = "receipt_intake_error"
    default_message = "Receipt extraction failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UnsupportedFormatError(ReceiptIntakeError):
    code = "unsupported_format"
    default_message = "Unsupported file type"


class ExtractionFailedError(ReceiptIntakeError):
    code = "extraction_failed"
    default_message = "Failed to extract text from file"


class AIResponseParseError(ReceiptIntakeError):
    code = "ai_response_parse_error"
    default_message = "Failed to parse the bill data. Please try again."


class MissingAPIKeyError(ReceiptIntakeError):
    code = "missing_api_key"
    default_message = "An API key is required for AI-assisted extraction"
