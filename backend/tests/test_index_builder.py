"""Tests for the index builder."""

from music_indexer.services.index_builder import (
    FileItem,
    FolderItem,
    build_cache_record,
    classify,
    extension_of,
    filter_media,
    parse_item,
    strip_extension,
    to_entry,
)

from conftest import file, folder


class TestClassify:
    def test_splits_folders_and_files_in_order(self):
        items = [folder("Rock"), file("notes.txt"), folder("Jazz"), file("song.mp3")]

        folders, files = classify(items)

        assert [f.name for f in folders] == ["Rock", "Jazz"]
        assert [f.name for f in files] == ["notes.txt", "song.mp3"]
        assert all(isinstance(f, FolderItem) for f in folders)
        assert all(isinstance(f, FileItem) for f in files)

    def test_drops_items_without_facet(self):
        folders, files = classify([{"id": "x", "name": "package"}])
        assert folders == []
        assert files == []

    def test_skips_entries_that_are_not_objects(self):
        folders, files = classify([None, "junk", 42, folder("Rock"), ["x"], file("a.mp3")])

        assert [f.name for f in folders] == ["Rock"]
        assert [f.name for f in files] == ["a.mp3"]
        assert parse_item("junk") is None

    def test_malformed_listing_still_builds_a_record(self):
        record = build_cache_record([None, {"id": "x", "name": "b.mp3", "file": {}}], "/Rock")
        assert [f.name for f in record.files] == ["b.mp3"]

    def test_folder_child_count(self):
        item = parse_item({"id": "f", "name": "Rock", "folder": {"childCount": 12}})
        assert item == FolderItem(id="f", name="Rock", child_count=12)

    def test_bad_size_defaults_to_zero(self):
        item = parse_item({"id": "x", "name": "a.mp3", "size": "lots", "file": {}})
        assert isinstance(item, FileItem)
        assert item.size == 0


class TestMediaFilter:
    def test_case_insensitive_allowlist(self):
        files = [FileItem(id=n, name=n) for n in ["a.MP3", "b.txt", "c.Flac", "d.exe"]]

        media = filter_media(files)

        assert {f.name for f in media} == {"a.MP3", "c.Flac"}

    def test_all_supported_extensions(self):
        names = ["1.mp3", "2.wav", "3.flac", "4.m4a", "5.aac", "6.ogg", "7.wma"]
        media = filter_media([FileItem(id=n, name=n) for n in names])
        assert len(media) == 6

    def test_name_without_dot_is_not_media(self):
        assert filter_media([FileItem(id="x", name="mp3")]) == []

    def test_extension_helpers(self):
        assert extension_of("Live.At.Home.FLAC") == "flac"
        assert extension_of(".hidden") == ""
        assert strip_extension("Live.At.Home.FLAC") == "Live.At.Home"
        assert strip_extension("README") == "README"


class TestToEntry:
    def test_derives_display_metadata(self):
        item = FileItem(id="f1", name="Song Title.mp3", size=4096, last_modified="2024-05-01T10:00:00Z")

        entry = to_entry(item, "/Music/Artist Name")

        assert entry.id == "f1"
        assert entry.title == "Song Title"
        assert entry.artist == "Artist Name"
        assert entry.extension == "MP3"
        assert entry.path == "/Music/Artist Name"
        assert entry.size == 4096
        assert entry.last_modified == "2024-05-01T10:00:00Z"

    def test_root_path_artist_is_unknown(self):
        assert to_entry(FileItem(id="f", name="x.mp3"), "").artist == "Unknown"

    def test_missing_name_does_not_raise(self):
        item = parse_item({"id": "f", "file": {}})

        entry = to_entry(item, "Rock")

        assert entry.name == ""
        assert entry.title == ""
        assert entry.extension == ""
        assert entry.artist == "Rock"

    def test_is_deterministic(self):
        item = FileItem(id="f", name="a.ogg", size=1)
        assert to_entry(item, "A") == to_entry(item, "A")


class TestBuildCacheRecord:
    def test_keeps_all_folders_and_only_media_files(self):
        items = [folder("Rock"), folder("Jazz"), file("notes.txt"), file("intro.m4a")]

        record = build_cache_record(items, "")

        assert [f.name for f in record.folders] == ["Rock", "Jazz"]
        assert [f.path for f in record.folders] == ["", ""]
        assert [f.name for f in record.files] == ["intro.m4a"]

    def test_relisting_yields_identical_content(self):
        items = [folder("Sub"), file("a.mp3"), file("b.flac")]

        first = build_cache_record(items, "/Rock")
        second = build_cache_record(items, "/Rock")

        assert first.files == second.files
        assert first.folders == second.folders
