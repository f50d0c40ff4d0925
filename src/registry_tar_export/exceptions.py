"""Custom exceptions for registry tar export."""


class RegistryError(Exception):
    """Base exception for all registry-related errors.

    Every subclass carries a stable ``kind`` tag so callers can classify a
    failure without matching on message text.
    """

    kind = "REGISTRY_ERROR"

    def __str__(self) -> str:
        return f"[{self.kind}] {super().__str__()}"


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    kind = "NETWORK_ERROR"


class AuthenticationError(RegistryError):
    """Raised when the registry challenge or token exchange fails."""

    kind = "AUTH_ERROR"


class ChecksumError(RegistryError):
    """Raised when downloaded content does not match its digest."""

    kind = "CHECKSUM_ERROR"


class FileOperationError(RegistryError):
    """Raised when a local file cannot be opened, written or truncated."""

    kind = "FILE_OPERATION_FAILED"


class ManifestError(RegistryError):
    """Raised when manifest or image config operations fail."""

    kind = "IMAGE_PARSE_FAILED"


class BlobDownloadError(RegistryError):
    """Raised when blob download fails after exhausting retries."""

    kind = "IMAGE_DOWNLOAD_FAILED"


class TarAssemblyError(RegistryError):
    """Raised when the output archive cannot be assembled."""

    kind = "TAR_ASSEMBLY_FAILED"


class ValidationError(RegistryError):
    """Raised when input, configuration or archive validation fails."""

    kind = "CONFIG_VALIDATE_FAILED"


class ExportTimeoutError(RegistryError):
    """Raised when the run-scoped deadline expires."""

    kind = "NETWORK_ERROR"
