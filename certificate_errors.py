"""Exceptions raised by certificate generation.

Fatal errors abort the whole generation request. Font lookups are the only
recoverable failure: the renderer catches `FontAssetNotFoundError` and
substitutes the default font.
"""


class CertificateError(Exception):
    """Base class; `str(exc)` is a message safe to show to a user."""

    retryable = True


class TemplateNotFoundError(CertificateError):
    retryable = False


class TemplateAssetNotFoundError(CertificateError):
    def __init__(self, ref: str, reason: str | None = None) -> None:
        message = f"Template asset not found: {ref}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.ref = ref


class UnsupportedTemplateTypeError(CertificateError):
    retryable = False

    def __init__(self, template_type: str, available: list[str]) -> None:
        super().__init__(
            f"Unsupported template type: {template_type}. "
            f"Available types: {', '.join(available) or '(none)'}"
        )
        self.template_type = template_type
        self.available = available


class InvalidTemplateError(CertificateError):
    retryable = False


class RenderError(CertificateError):
    pass


class ArchiveError(CertificateError):
    pass


class NoRecordsError(CertificateError):
    retryable = False

    def __init__(self, message: str = "No records found in data file") -> None:
        super().__init__(message)


class RecordSourceError(CertificateError):
    retryable = False


class FontAssetNotFoundError(CertificateError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"Font asset not found: {ref}")
        self.ref = ref
