"""Domain exceptions for book assembly, library, and CLI diagnostics.

Responsibilities:
- Name the failing stage and, where applicable, the failing page/chunk index.
- Separate caller mistakes (`ValidationError`, `NotFoundError`) from downstream
  stage failures that abort an operation and are safe to retry as a whole.

Best-effort cleanup failures are not exceptions; see
`pagevoice.pipeline.cleanup.CleanupReport`.
"""

from __future__ import annotations


class PagevoiceError(RuntimeError):
    """Base error carrying stage-scoped diagnostics."""

    retryable = False

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
        item_index: int | None = None,
    ) -> None:
        """Initialize a stage-scoped error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint
        self.item_index = item_index


class ValidationError(PagevoiceError):
    """Raised when caller input has the wrong shape. Never retried automatically."""

    def __init__(self, detail: str, *, hint: str | None = None, stage: str = "validate") -> None:
        super().__init__(stage=stage, detail=detail, hint=hint)


class NotFoundError(PagevoiceError):
    """Raised when a book or voice does not exist for the calling owner."""

    def __init__(self, detail: str, *, hint: str | None = None, stage: str = "lookup") -> None:
        super().__init__(stage=stage, detail=detail, hint=hint)


class StorageError(PagevoiceError):
    """Raised when the artifact store or record persistence fails."""

    retryable = True

    def __init__(
        self,
        detail: str,
        *,
        item_index: int | None = None,
        hint: str | None = None,
        stage: str = "storage",
    ) -> None:
        super().__init__(stage=stage, detail=detail, hint=hint, item_index=item_index)


class ExtractionError(PagevoiceError):
    """Raised when text extraction fails for a page."""

    retryable = True

    def __init__(
        self, detail: str, *, item_index: int | None = None, hint: str | None = None
    ) -> None:
        super().__init__(stage="extract", detail=detail, hint=hint, item_index=item_index)


class SynthesisError(PagevoiceError):
    """Raised when speech synthesis fails for a chunk."""

    retryable = True

    def __init__(
        self, detail: str, *, item_index: int | None = None, hint: str | None = None
    ) -> None:
        super().__init__(stage="synthesize", detail=detail, hint=hint, item_index=item_index)


class AssemblyError(PagevoiceError):
    """Raised when audio segments cannot be combined into one rendering."""

    retryable = True

    def __init__(
        self, detail: str, *, item_index: int | None = None, hint: str | None = None
    ) -> None:
        super().__init__(stage="assemble", detail=detail, hint=hint, item_index=item_index)


class ProviderError(RuntimeError):
    """Raised when an HTTP collaborator request fails or returns malformed output."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "unknown",
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for stage-aware diagnostics."""

        super().__init__(message)
        self.provider = provider
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code

    @property
    def transient(self) -> bool:
        """Return whether a bounded retry may succeed."""

        if self.failure_kind in {"timeout", "transport", "rate_limited"}:
            return True
        return self.status_code is not None and self.status_code >= 500
