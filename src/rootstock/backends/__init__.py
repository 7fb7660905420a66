"""Build backends: one acquisition strategy per declared source kind."""

from .base import Backend, BackendKind, BackendState, Conveyor, Packer, StagedBackend
from .bootstrap import ArchBackend, DebootstrapBackend, YumBackend, ZypperBackend
from .busybox import BusyBoxBackend
from .local import LocalImageBackend
from .oci import OCI_TRANSPORTS, OCIBackend, is_oci_transport
from .registries import LibraryBackend, OrasBackend, ShubBackend
from .registry import LITERAL_SOURCES, backend_kind, select_backend
from .scratch import ScratchBackend

__all__ = [
    "LITERAL_SOURCES",
    "OCI_TRANSPORTS",
    "ArchBackend",
    "Backend",
    "BackendKind",
    "BackendState",
    "BusyBoxBackend",
    "Conveyor",
    "DebootstrapBackend",
    "LibraryBackend",
    "LocalImageBackend",
    "OCIBackend",
    "OrasBackend",
    "Packer",
    "ScratchBackend",
    "ShubBackend",
    "StagedBackend",
    "YumBackend",
    "ZypperBackend",
    "backend_kind",
    "is_oci_transport",
    "select_backend",
]
