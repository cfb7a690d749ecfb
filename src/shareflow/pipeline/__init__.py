"""
Pipeline stages: folder expansion and file processing.
"""

from shareflow.pipeline.expansion import FolderExpansionStage
from shareflow.pipeline.loop import DEFAULT_POP_TIMEOUT, DEFAULT_RECONNECT_DELAY, ConsumerLoop
from shareflow.pipeline.worker import FileWorker, resolve_mime_type, resolve_size

__all__ = [
    "ConsumerLoop",
    "DEFAULT_POP_TIMEOUT",
    "DEFAULT_RECONNECT_DELAY",
    "FolderExpansionStage",
    "FileWorker",
    "resolve_mime_type",
    "resolve_size",
]
