"""Public package entrypoint for the rootstock image-build pipeline."""

from .backends import BackendKind, BackendState, select_backend
from .bundle import Bundle
from .context import BuildContext
from .definition import Definition, Section
from .errors import (
    BackendStateError,
    CancelledError,
    ConfigError,
    ErrorCode,
    FatalError,
    RootstockError,
    TransientError,
)
from .observability import StructuredLogger
from .options import BuildOptions
from .pipeline import BuildPipeline, build
from .signing import KeyPair, KeyPairGenerator, KeyPairOptions, generate_keypair

__all__ = [
    "BackendKind",
    "BackendState",
    "BackendStateError",
    "BuildContext",
    "BuildOptions",
    "BuildPipeline",
    "Bundle",
    "CancelledError",
    "ConfigError",
    "Definition",
    "ErrorCode",
    "FatalError",
    "KeyPair",
    "KeyPairGenerator",
    "KeyPairOptions",
    "RootstockError",
    "Section",
    "StructuredLogger",
    "TransientError",
    "build",
    "generate_keypair",
    "select_backend",
]
