"""Test helper utilities."""

from tests.helpers.fake_platform import (
    FakePlatformAdapter,
    FetchCall,
    make_record,
    recent,
)

__all__ = [
    "FakePlatformAdapter",
    "FetchCall",
    "make_record",
    "recent",
]
