from music_indexer.models.kv_entry import KVEntry
from music_indexer.models.hash_field import HashField

__all__ = [
    "KVEntry",
    "HashField",
]
