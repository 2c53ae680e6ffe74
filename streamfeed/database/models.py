"""
StreamFeed Data Models
=====================

Pydantic data models for the ingestion pipeline: remote queue references,
staged documents, content records, and the per-cycle import outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any
import json

from pydantic import BaseModel, Field, field_validator


class QueueItemRef(BaseModel):
    """One item available on the remote queue."""
    uid: str = Field(..., min_length=1, description="Opaque remote item ID")
    title: str = Field(default="", description="Item title as listed remotely")
    published_at: Optional[datetime] = Field(default=None, description="Remote publication timestamp")

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"QueueItemRef({self.uid}:{self.title[:40]})"


class ContentListPage(BaseModel):
    """One page of the remote queue listing."""
    items: List[QueueItemRef] = Field(default_factory=list)
    total_in_queue: int = Field(default=0, ge=0)
    more_results: bool = Field(default=False)
    starting_offset: int = Field(default=0, ge=0)
    ending_offset: int = Field(default=0, ge=0)


class AssetRef(BaseModel):
    """A media asset referenced by a remote document."""
    url: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)


class FetchedDocument(BaseModel):
    """Download locations for one queue item."""
    uid: str = Field(..., min_length=1)
    document_url: str = Field(..., min_length=1)
    assets: List[AssetRef] = Field(default_factory=list, description="Assets in remote order")


class StagedStatus(str, Enum):
    """Lifecycle state of a staged document."""
    STAGED = "staged"
    IMPORTED = "imported"


class StagedDocument(BaseModel):
    """A downloaded document sitting in the staging directory."""
    uid: str = Field(..., min_length=1, description="Item uid, equal to the file stem")
    local_path: Path
    status: StagedStatus = Field(default=StagedStatus.STAGED)

    def __str__(self) -> str:
        return f"StagedDocument({self.local_path.name}:{self.status.value})"


class RecordStatus(str, Enum):
    """Host record status. TRASH records do not block re-creation."""
    DRAFT = "draft"
    PUBLISHED = "publish"
    TRASH = "trash"


class ContentRecord(BaseModel):
    """Structured content record created from a staged document."""
    id: Optional[int] = Field(default=None, description="Host store primary key")
    title: str = Field(..., min_length=1, max_length=1000, description="Record title, the dedupe key")
    slug: str = Field(default="", description="URL slug derived from the title")
    body_html: str = Field(default="", description="Assembled body markup")
    tags: List[str] = Field(default_factory=list, description="Tag names, unique, order kept")
    author_id: Optional[int] = Field(default=None)
    category_id: Optional[int] = Field(default=None)
    status: RecordStatus = Field(default=RecordStatus.DRAFT)
    source_uid: Optional[str] = Field(default=None, description="Remote uid the record came from")
    created_at: Optional[datetime] = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Record title cannot be empty")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        """Drop empty names and case-insensitive duplicates, keep first spelling."""
        seen = set()
        cleaned = []
        for tag in v:
            name = tag.strip() if isinstance(tag, str) else ""
            if name and name.lower() not in seen:
                seen.add(name.lower())
                cleaned.append(name)
        return cleaned

    def tags_json(self) -> str:
        return json.dumps(self.tags)

    @classmethod
    def from_db_row(cls, row: Dict[str, Any], tags: Optional[List[str]] = None) -> "ContentRecord":
        """Create ContentRecord from a database row."""
        data = dict(row)
        data["tags"] = tags or []
        return cls(**data)

    def __str__(self) -> str:
        return f"ContentRecord({self.title[:50]}:{self.status.value})"


class ItemState(str, Enum):
    """Per-item progress through an import cycle."""
    LISTED = "listed"
    DOWNLOADING = "downloading"
    STAGED = "staged"
    REMOTE_DELETED = "remote_deleted"
    REMOTE_DELETE_SKIPPED_OR_FAILED = "remote_delete_skipped_or_failed"
    PARSED = "parsed"
    PUBLISHED = "published"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    ARCHIVED = "archived"
    FAILED = "failed"


@dataclass
class ImportErrorEntry:
    """One isolated failure recorded during a cycle."""
    ref: str
    stage: str
    cause: str

    def __str__(self) -> str:
        return f"{self.stage}:{self.ref}: {self.cause}"


@dataclass
class ImportOutcome:
    """Aggregate result of one import cycle."""
    downloaded: int = 0
    imported: int = 0
    skipped_duplicates: int = 0
    remote_deleted: int = 0
    quarantined: int = 0
    total_in_queue: Optional[int] = None
    skipped_run: bool = False
    duration_seconds: float = 0.0
    errors: List[ImportErrorEntry] = field(default_factory=list)

    def add_error(self, ref: str, stage: str, cause: Any) -> None:
        self.errors.append(ImportErrorEntry(ref=str(ref), stage=stage, cause=str(cause)))

    @property
    def success(self) -> bool:
        return not self.errors and not self.skipped_run

    def errors_for(self, stage: str) -> List[ImportErrorEntry]:
        return [e for e in self.errors if e.stage == stage]

    def summary(self) -> str:
        if self.skipped_run:
            return "Import skipped: another cycle is already running"
        return (
            f"{self.downloaded} downloaded, {self.imported} imported, "
            f"{self.skipped_duplicates} duplicates skipped, "
            f"{self.remote_deleted} removed from queue, {len(self.errors)} errors"
        )
