"""Request/response values passed between the HTTP server, router and proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from shipyard.serve.routes import normalize_path

HeaderList = list[tuple[str, str]]


def header_list(headers: Union[HeaderList, Mapping[str, str], None]) -> HeaderList:
    """Accept a mapping or a list of pairs; keep order and duplicates."""
    if headers is None:
        return []
    if isinstance(headers, Mapping):
        return [(str(k), str(v)) for k, v in headers.items()]
    return [(str(k), str(v)) for k, v in headers]


def find_header(headers: HeaderList, name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers:
        if key.lower() == lowered:
            return value
    return None


@dataclass(frozen=True)
class Request:
    """An inbound request; target is the raw path plus query string."""

    method: str
    target: str
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""

    @property
    def path(self) -> str:
        return normalize_path(self.target)

    def header(self, name: str) -> Optional[str]:
        return find_header(list(self.headers), name)


@dataclass
class Response:
    status: int
    headers: HeaderList = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        return find_header(self.headers, name)

    @classmethod
    def text(cls, status: int, message: str, extra: Optional[HeaderList] = None) -> "Response":
        headers = [("Content-Type", "text/plain; charset=utf-8")]
        headers.extend(extra or [])
        return cls(status, headers, message.encode("utf-8"))
