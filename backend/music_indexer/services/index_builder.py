"""Index builder — turns raw drive listings into typed items and cache records.

Everything here is pure: no I/O, no clock reads except the record timestamp,
and no exceptions for malformed items (missing fields fall back to defaults).
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from music_indexer.records import CacheRecord, FolderEntry, MediaFileEntry

# Audio formats the player can stream
AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "flac", "m4a", "aac", "ogg"})

UNKNOWN_ARTIST = "Unknown"


@dataclass(frozen=True)
class FolderItem:
    """A listed child that is a folder."""
    id: str
    name: str
    child_count: Optional[int] = None


@dataclass(frozen=True)
class FileItem:
    """A listed child that is a file."""
    id: str
    name: str
    size: int = 0
    last_modified: Optional[str] = None
    mime_type: Optional[str] = None


RawItem = Union[FolderItem, FileItem]


def parse_item(raw: dict[str, Any]) -> Optional[RawItem]:
    """Map one Graph driveItem onto FolderItem/FileItem. Items with neither facet are dropped."""
    if not isinstance(raw, dict):
        return None
    item_id = str(raw.get("id") or "")
    name = raw.get("name") or ""
    if not isinstance(name, str):
        name = str(name)

    folder = raw.get("folder")
    if folder is not None:
        child_count = folder.get("childCount") if isinstance(folder, dict) else None
        return FolderItem(id=item_id, name=name, child_count=child_count)

    file_facet = raw.get("file")
    if file_facet is not None:
        try:
            size = int(raw.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return FileItem(
            id=item_id,
            name=name,
            size=size,
            last_modified=raw.get("lastModifiedDateTime"),
            mime_type=file_facet.get("mimeType") if isinstance(file_facet, dict) else None,
        )

    return None


def classify(raw_items: Iterable[Union[dict[str, Any], RawItem]]) -> tuple[list[FolderItem], list[FileItem]]:
    """Split a listing into folders and files, keeping remote order."""
    folders: list[FolderItem] = []
    files: list[FileItem] = []
    for raw in raw_items:
        if isinstance(raw, (FolderItem, FileItem)):
            item = raw
        elif isinstance(raw, dict):
            item = parse_item(raw)
        else:
            continue
        if isinstance(item, FolderItem):
            folders.append(item)
        elif isinstance(item, FileItem):
            files.append(item)
    return folders, files


def extension_of(name: str) -> str:
    """Lower-cased text after the last dot, or '' when there is none."""
    base, dot, ext = name.rpartition(".")
    if not dot or not base:
        return ""
    return ext.lower()


def strip_extension(name: str) -> str:
    base, dot, ext = name.rpartition(".")
    if not dot or not base:
        return name
    return base


def is_media(name: str, allowlist: frozenset[str] = AUDIO_EXTENSIONS) -> bool:
    return extension_of(name) in allowlist


def filter_media(files: Iterable[FileItem], allowlist: frozenset[str] = AUDIO_EXTENSIONS) -> list[FileItem]:
    return [f for f in files if is_media(f.name, allowlist)]


def folder_basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1] if path else ""


def to_entry(file: FileItem, owning_path: str) -> MediaFileEntry:
    """Display entry for a media file: title from the name, artist from the parent folder."""
    return MediaFileEntry(
        id=file.id,
        name=file.name,
        size=file.size,
        path=owning_path,
        title=strip_extension(file.name),
        artist=folder_basename(owning_path) or UNKNOWN_ARTIST,
        extension=extension_of(file.name).upper(),
        last_modified=file.last_modified,
    )


def to_folder_entry(folder: FolderItem, owning_path: str) -> FolderEntry:
    return FolderEntry(
        id=folder.id,
        name=folder.name,
        path=owning_path,
        child_count=folder.child_count,
    )


def child_path(parent: str, name: str) -> str:
    return f"{parent}/{name}"


def build_cache_record(raw_items: Iterable[Union[dict[str, Any], RawItem]], path: str) -> CacheRecord:
    """Cache record for ``path``: every sub-folder plus the media files directly inside it."""
    folders, files = classify(raw_items)
    return CacheRecord(
        files=[to_entry(f, path) for f in filter_media(files)],
        folders=[to_folder_entry(f, path) for f in folders],
    )
