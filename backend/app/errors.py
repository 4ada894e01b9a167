"""
Exception classes for the ingestion and RAG pipeline.

Each error carries the HTTP status it maps to, so routers can let them
propagate and the handler in main.py renders the response envelope.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidRequestError(PipelineError):
    """Raised when input is rejected before any remote call is made."""

    status_code = 400


class UnsupportedFormatError(InvalidRequestError):
    """Raised when a document type cannot be parsed."""

    def __init__(self, file_name: str):
        super().__init__(
            message=f"Unsupported document format: {file_name}",
            detail="Supported formats are PDF, Word (.docx), plain text, markdown and source code files.",
        )


class NotFoundError(PipelineError):
    """Raised when a referenced material does not exist."""

    status_code = 404


class IndexingInProgressError(PipelineError):
    """Raised when a material is already being indexed."""

    status_code = 409

    def __init__(self, material_id: str):
        super().__init__(
            message=f"Material {material_id} is already being indexed",
            detail="Wait for the current run to finish, then retry.",
        )


class ParseError(PipelineError):
    """Raised when a document yields no parseable pages at all."""

    status_code = 422


class ConfigurationError(PipelineError):
    """Raised when embedding, vector or LLM credentials are missing."""

    status_code = 500


class TransportError(PipelineError):
    """Raised when a remote call fails."""

    status_code = 502


class FetchError(TransportError):
    """Raised when a source file cannot be downloaded."""


class EmbeddingError(TransportError):
    """Raised when the embedding provider fails or returns bad vectors."""


class VectorStoreError(TransportError):
    """Raised when the vector index rejects an upsert, query or delete."""


class GenerationError(TransportError):
    """Raised when the language model fails or its output breaks the schema."""


class NoContentError(PipelineError):
    """Raised when a parsed document produces no chunks to index."""

    status_code = 422
