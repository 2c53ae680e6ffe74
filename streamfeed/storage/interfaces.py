"""
Host Content Store Interface
============================

The collaborator the import pipeline publishes into. The bundled
implementation is ``SqliteContentStore``; embedding applications provide
their own subclass to publish into a different system.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..database.models import ContentRecord


class TagRegistry(ABC):
    """Taxonomy keywords are mapped into."""

    @abstractmethod
    def ensure_tag(self, name: str) -> int:
        """Return the id of the tag called ``name``, creating it if missing."""


class HostContentStore(TagRegistry):
    """Where parsed content records are published."""

    @abstractmethod
    def find_record_by_title(self, title: str) -> Optional[ContentRecord]:
        """Find a non-trashed record with exactly this title."""

    @abstractmethod
    def create_record(self, record: ContentRecord) -> int:
        """Create a record and link its tags.

        Raises:
            PublishError: If the record could not be created
        """

    def record_import_failure(self, document_name: str, error: str) -> int:
        """Count a failed import of a staged document, return the total."""
        return 0

    def clear_import_failures(self, document_name: str) -> None:
        """Forget failures of a staged document once it is consumed."""
