"""Remote entry models.

This module defines the immutable listing identity of a remote entry
and the mutable lifecycle record a connector keeps for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from core.constants import GZIP_SUFFIX, NON_DATA_SUFFIXES


@dataclass(frozen=True)
class RemoteEntry:
    """One retrievable unit as produced by a listing.

    Attributes:
        name: Remote file or archive member name; the entry identity.
        is_metadata_file: Whether the entry is a checksum/text sidecar.
    """

    name: str
    is_metadata_file: bool = False


@dataclass(eq=False)
class EntryRecord:
    """Lifecycle state for one entry owned by a connector.

    Attributes:
        name: Remote name, shared with the originating listing entry.
        local_path: Local download or extraction target.
        is_metadata_file: Whether the entry is a checksum/text sidecar.
        fetched: Set once the entry is available locally.
        decompressed: Set once the decompressed artifact exists.
    """

    name: str
    local_path: Path
    is_metadata_file: bool = False
    fetched: bool = False
    decompressed: bool = False

    @classmethod
    def from_remote(cls, entry: RemoteEntry, tmp_root: Path) -> "EntryRecord":
        """Create a lifecycle record under the temporary root."""
        return cls(
            name=entry.name,
            local_path=tmp_root / entry.name,
            is_metadata_file=entry.is_metadata_file,
        )

    @property
    def is_gzip(self) -> bool:
        """Whether the entry name carries the gzip suffix."""
        return self.name.endswith(GZIP_SUFFIX)

    @property
    def decompressed_path(self) -> Path:
        """Local path with the compression suffix stripped."""
        if self.local_path.name.endswith(GZIP_SUFFIX):
            return self.local_path.with_name(self.local_path.name[: -len(GZIP_SUFFIX)])
        return self.local_path

    def to_remote(self) -> RemoteEntry:
        """Return the immutable listing identity of this record."""
        return RemoteEntry(name=self.name, is_metadata_file=self.is_metadata_file)


def is_metadata_name(name: str) -> bool:
    """Return whether a remote name is a known non-data sidecar file."""
    return name.lower().endswith(NON_DATA_SUFFIXES)
