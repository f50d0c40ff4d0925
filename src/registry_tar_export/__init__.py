"""Registry Tar Export - build docker load archives from a registry, skipping known layers."""

__version__ = "0.1.0"

from .config import ExportConfig, load_config
from .exceptions import (
    AuthenticationError,
    BlobDownloadError,
    ChecksumError,
    ExportTimeoutError,
    FileOperationError,
    ManifestError,
    RegistryConnectionError,
    RegistryError,
    TarAssemblyError,
    ValidationError,
)
from .export import ExportResult, export_image
from .operations.blobs import fetch_blob
from .operations.plan import LayerPlan, plan_layers
from .tar.assembler import assemble_archive
from .utils.host_layers import load_known_digests
from .utils.validator import validate_docker_tar

__all__ = [
    "export_image",
    "ExportResult",
    "ExportConfig",
    "load_config",
    "plan_layers",
    "LayerPlan",
    "fetch_blob",
    "assemble_archive",
    "load_known_digests",
    "validate_docker_tar",
    "RegistryError",
    "RegistryConnectionError",
    "AuthenticationError",
    "ChecksumError",
    "FileOperationError",
    "ManifestError",
    "BlobDownloadError",
    "TarAssemblyError",
    "ValidationError",
    "ExportTimeoutError",
]
