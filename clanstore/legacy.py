"""
Legacy Document Store - YAML file holding clan data from before the relational store.

The document is a tree of mappings. Only the top-level "Clans" section matters
here: it is read once by the migrator and cleared after a clean migration.
"""

import os
import tempfile
from typing import Any, Dict, Mapping, Optional

import yaml

from .core.logger import ComponentLogger
from .errors import LegacyDocumentError

_logger = ComponentLogger("legacy")

CLANS_SECTION = "Clans"

class YamlDocumentStore:
    """Read/write access to a hierarchical YAML document."""

    def __init__(self, path: str, document: Optional[Dict[str, Any]] = None):
        self.path = path
        self._document: Dict[str, Any] = document if document is not None else {}

    @classmethod
    def load(cls, path: str) -> "YamlDocumentStore":
        """
        Load a document from disk. A missing file is an empty document.

        Raises:
            LegacyDocumentError: If the file is unreadable or not a YAML mapping
        """
        if not os.path.exists(path):
            _logger.info("legacy_file_missing", file_path=path)
            return cls(path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            _logger.error("legacy_file_unreadable",
                file_path=path,
                error_type=type(e).__name__,
                error_msg=str(e),
            )
            raise LegacyDocumentError(f"Cannot read legacy data file {path}: {e}") from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise LegacyDocumentError(
                f"Legacy data file {path} must contain a mapping, got {type(document).__name__}"
            )

        _logger.debug("legacy_file_loaded", file_path=path, sections=len(document))
        return cls(path, document)

    @property
    def document(self) -> Mapping[str, Any]:
        return self._document

    def has_section(self, name: str) -> bool:
        return self._document.get(name) is not None

    def section(self, name: str) -> Optional[Any]:
        return self._document.get(name)

    def clear_section(self, name: str) -> None:
        self._document.pop(name, None)

    def save(self) -> None:
        """
        Write the document back, replacing the file atomically.

        Raises:
            LegacyDocumentError: If the file cannot be written
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".clanstore-", suffix=".yml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._document, f, default_flow_style=False, allow_unicode=True)
            os.replace(tmp_path, self.path)
        except (OSError, yaml.YAMLError) as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            _logger.error("legacy_file_write_failed",
                file_path=self.path,
                error_type=type(e).__name__,
                error_msg=str(e),
            )
            raise LegacyDocumentError(f"Cannot write legacy data file {self.path}: {e}") from e

        _logger.info("legacy_file_saved", file_path=self.path)
