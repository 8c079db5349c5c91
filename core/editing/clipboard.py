"""
Channel Clipboard - Single-slot copy buffer for fixture values

A clipboard belongs to one edit session unless the host injects a shared
one (for example to paste across looks).
"""

from dataclasses import dataclass
from typing import List, Optional, FrozenSet, Sequence


@dataclass(frozen=True)
class ClipboardContent:
    """
    Copied fixture values.

    active is None when the source fixture had every channel active;
    pasting such content leaves target membership alone.
    """
    source_fixture_id: str
    values: List[int]
    active: Optional[FrozenSet[int]] = None


class ChannelClipboard:
    """Holds the most recent copy. Copying again replaces it."""

    def __init__(self):
        self._content: Optional[ClipboardContent] = None

    def copy(
        self,
        fixture_id: str,
        values: Sequence[int],
        active: Optional[FrozenSet[int]],
    ) -> ClipboardContent:
        self._content = ClipboardContent(
            source_fixture_id=fixture_id,
            values=list(values),
            active=frozenset(active) if active is not None else None,
        )
        return self._content

    @property
    def content(self) -> Optional[ClipboardContent]:
        return self._content

    @property
    def is_empty(self) -> bool:
        return self._content is None

    def clear(self) -> None:
        self._content = None
