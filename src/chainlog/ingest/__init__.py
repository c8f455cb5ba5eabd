"""Changelog ingestion: record validation, DN routing and the poll loop."""

from .dn import DnClassifier, DnTarget, TargetKind, parse_dn
from .entries import ChangeEntry, ChangeRecord, validate_record
from .source import ChangelogSource, InMemoryChangelog, LdapChangelogSource
from .ingestor import ChangelogIngestor, IngestState

__all__ = [
    "DnClassifier",
    "DnTarget",
    "TargetKind",
    "parse_dn",
    "ChangeEntry",
    "ChangeRecord",
    "validate_record",
    "ChangelogSource",
    "InMemoryChangelog",
    "LdapChangelogSource",
    "ChangelogIngestor",
    "IngestState",
]
