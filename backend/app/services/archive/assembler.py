"""In-memory zip assembly for conversation exports."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set
import io
import json
import zipfile

from app.config import settings
from app.services.conversation.artifacts import suffixed_name


UTF8_BOM = "\ufeff"


class ArchivePackagingError(RuntimeError):
    """Raised when the final archive cannot be produced."""


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class ArchiveFolder:
    """A path prefix inside an assembler; files added here land under it."""

    def __init__(self, assembler: "ArchiveAssembler", prefix: str = ""):
        self._assembler = assembler
        self.prefix = prefix.strip("/")

    def path(self, name: str) -> str:
        return _join(self.prefix, name)

    def add_bytes(self, name: str, data: bytes) -> str:
        """Store `data` and return its final path; a taken name gets `_1`, `_2`, ... before the extension."""
        directory, _, filename = self.path(name).rpartition("/")
        full = _join(directory, self._assembler._claim(directory, filename))
        self._assembler._entries[full] = bytes(data)
        return full

    def add_text(self, name: str, text: str) -> str:
        """`.md` files get a UTF-8 BOM so browsers pick the right encoding."""
        if name.lower().endswith(".md"):
            text = UTF8_BOM + text
        return self.add_bytes(name, text.encode("utf-8"))

    def add_json(self, name: str, payload: Any) -> str:
        return self.add_bytes(name, json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))

    def folder(self, name: str, unique: bool = False) -> "ArchiveFolder":
        if unique:
            name = self._assembler._claim(_join(self.prefix, "/"), name + "/").rstrip("/")
        return ArchiveFolder(self._assembler, _join(self.prefix, name))


class ArchiveAssembler(ArchiveFolder):
    """
    Named file hierarchy built in memory and packaged once.

    Claimed names live on the assembler, so every folder of one bulk export
    shares the same collision tracking.
    """

    def __init__(self, compression_level: Optional[int] = None):
        super().__init__(self, "")
        self.compression_level = (
            settings.ZIP_COMPRESSION_LEVEL if compression_level is None else compression_level
        )
        self._entries: "OrderedDict[str, bytes]" = OrderedDict()
        self._claimed: Dict[str, Set[str]] = {}

    def _claim(self, directory: str, name: str) -> str:
        used = self._claimed.setdefault(directory, set())
        is_dir = name.endswith("/")
        base = name.rstrip("/")
        candidate = base
        counter = 1
        while candidate in used:
            candidate = f"{base}_{counter}" if is_dir else suffixed_name(base, counter)
            counter += 1
        used.add(candidate)
        return candidate + ("/" if is_dir else "")

    def names(self) -> List[str]:
        return list(self._entries)

    def read(self, path: str) -> bytes:
        return self._entries[path]

    def build_zip(self) -> bytes:
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(
                buffer,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            ) as zf:
                for path, data in self._entries.items():
                    zf.writestr(path, data)
        except Exception as exc:
            raise ArchivePackagingError(f"zip packaging failed: {exc}") from exc
        return buffer.getvalue()
