"""
Frame Data Model
=================

Wire-ready frame representation passed from the publisher to connections.

Design Rules:
    - Header is generated once, at encode time
    - Body is the caller's JPEG bytes, never decoded or modified
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One encoded multipart part.

    Attributes:
        header: Multipart part header (boundary, Content-Length, X-Timestamp)
        body: Opaque JPEG payload
    """

    header: bytes
    body: bytes

    def __len__(self) -> int:
        return len(self.header) + len(self.body)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return f"Frame(header={len(self.header)}B, body={len(self.body)}B)"
