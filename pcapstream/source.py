# pcapstream/source.py
from __future__ import annotations

import io
import os
from typing import BinaryIO, Optional, Union

SourceLike = Union[str, "os.PathLike[str]", bytes, bytearray, BinaryIO, "ByteSource"]


class ByteSource:
    """
    Forward-only byte reader owned by a single engine.

    Accepts a path, a bytes object or an open binary file object. Short reads
    mean the underlying data is exhausted; once exhausted, the source never
    reads from the file again.
    """

    def __init__(self, src: SourceLike, name: Optional[str] = None):
        self._owned = False
        self._path = None
        if isinstance(src, (bytes, bytearray)):
            self._fp: BinaryIO = io.BytesIO(bytes(src))
            self.name = name or "<bytes>"
        elif isinstance(src, (str, os.PathLike)):
            self._path = os.fspath(src)
            self._fp = open(self._path, "rb")
            self._owned = True
            self.name = name or os.fspath(src)
        else:
            self._fp = src
            self.name = name or getattr(src, "name", "<stream>")
        self.offset = 0
        self.exhausted = False

    @classmethod
    def wrap(cls, src: SourceLike) -> "ByteSource":
        if isinstance(src, ByteSource):
            return src
        return cls(src)

    def read(self, n: int) -> bytes:
        if n <= 0 or self.exhausted:
            return b""
        chunks = []
        want = n
        # raw/unbuffered files may return fewer bytes than requested
        while want > 0:
            b = self._fp.read(want)
            if not b:
                self.exhausted = True
                break
            chunks.append(b)
            want -= len(b)
        buf = b"".join(chunks)
        self.offset += len(buf)
        return buf

    def read_byte(self) -> Optional[int]:
        b = self.read(1)
        if not b:
            return None
        return b[0]

    @property
    def reopenable(self) -> bool:
        return self._path is not None

    def reopen(self):
        """Open the path again from its first byte. Only for sources opened from a path."""
        if self._path is None:
            raise ValueError(f"{self.name}: only path sources can be reopened")
        self._fp.close()
        self._fp = open(self._path, "rb")
        self.offset = 0
        self.exhausted = False

    def close(self):
        if self._owned:
            self._fp.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"ByteSource({self.name!r}, offset={self.offset})"
