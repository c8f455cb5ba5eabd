from .logfile import AppendOnlyLog, LogFormatError, LogLine
from .metadata import MetadataStore
from .projection import KeyInfo, ProjectionUpdater, describe_ssh_key

__all__ = [
    "AppendOnlyLog",
    "LogFormatError",
    "LogLine",
    "MetadataStore",
    "KeyInfo",
    "ProjectionUpdater",
    "describe_ssh_key",
]
