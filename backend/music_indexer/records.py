"""Persisted JSON records.

Stored JSON uses camelCase keys (``isScanning``, ``lastUpdate`` ...) so the
records read the same as the ones the web front end already consumes.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str):
        return cls.model_validate_json(raw)


class MediaFileEntry(Record):
    id: str
    name: str = ""
    size: int = 0
    path: str = ""
    title: str = ""
    artist: str = "Unknown"
    extension: str = ""
    last_modified: Optional[str] = None


class FolderEntry(Record):
    id: str
    name: str = ""
    path: str = ""
    child_count: Optional[int] = None


class CacheRecord(Record):
    """Listing of one folder. Always written whole."""

    files: list[MediaFileEntry] = Field(default_factory=list)
    folders: list[FolderEntry] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)


class ScanCheckpoint(Record):
    """Progress of one crawl epoch for one user."""

    is_scanning: bool = False
    current_path: str = ""
    scanned_paths: list[str] = Field(default_factory=list)
    total_top_level_folders: int = 0
    scanned_top_level_folders: int = 0
    top_level_folder_paths: list[str] = Field(default_factory=list)
    current_top_level_folder: Optional[str] = None
    cumulative_file_count: int = 0
    cumulative_folder_count: int = 0
    start_time: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    @property
    def has_partial_progress(self) -> bool:
        return bool(self.top_level_folder_paths) and (
            self.scanned_top_level_folders < self.total_top_level_folders
        )

    @property
    def is_complete(self) -> bool:
        return self.scanned_top_level_folders >= self.total_top_level_folders

    def seconds_since_update(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.last_update).total_seconds()

    def is_stalled(self, threshold_seconds: float, now: Optional[datetime] = None) -> bool:
        """Marked as scanning but nobody has written progress for a while."""
        return self.is_scanning and self.seconds_since_update(now) > threshold_seconds


class ScanLock(Record):
    holder: str
    acquired_at: datetime = Field(default_factory=utcnow)


class UserSettings(Record):
    music_root_path: str = ""
    drive_type: str = "personal"
    drive_id: str = ""
    item_id: str = ""
    last_updated: datetime = Field(default_factory=utcnow)
