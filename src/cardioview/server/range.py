from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

from fastapi import Request
from fastapi.responses import StreamingResponse

CHUNK_SIZE = 1024 * 1024

RangeReader = Callable[[int, int], Iterator[bytes]]


def _parse_range_header(range_header: str, size: int) -> Optional[Tuple[int, int]]:
    # Expected format: bytes=start-end
    if not range_header or size <= 0:
        return None
    if not range_header.startswith("bytes="):
        return None
    ranges = range_header.replace("bytes=", "", 1).strip()
    # Only the first range of a multi-range request is served
    if "," in ranges:
        ranges = ranges.split(",", 1)[0].strip()
    if "-" not in ranges:
        return None
    start_s, end_s = (part.strip() for part in ranges.split("-", 1))

    if start_s == "":
        # suffix bytes: e.g. "-500"
        try:
            length = int(end_s)
        except ValueError:
            return None
        length = min(length, size)
        if length <= 0:
            return None
        return size - length, size - 1

    try:
        start = int(start_s)
        end = size - 1 if end_s == "" else int(end_s)
    except ValueError:
        return None

    start = max(start, 0)
    end = min(end, size - 1)
    if end < start:
        return None
    return start, end


def _iter_file_range(path: Path, start: int, end: int) -> Iterator[bytes]:
    with path.open("rb") as f:
        f.seek(start)
        remaining = (end - start) + 1
        while remaining > 0:
            data = f.read(min(CHUNK_SIZE, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


def _iter_bytes_range(data: bytes, start: int, end: int) -> Iterator[bytes]:
    view = memoryview(data)
    for offset in range(start, end + 1, CHUNK_SIZE):
        yield bytes(view[offset : min(offset + CHUNK_SIZE, end + 1)])


def _ranged_response(request: Request, size: int, reader: RangeReader, media_type: str) -> StreamingResponse:
    range_header = request.headers.get("range")
    byte_range = _parse_range_header(range_header, size) if range_header else None

    if byte_range is None:
        headers = {"Accept-Ranges": "bytes", "Content-Length": str(size)}
        body = reader(0, size - 1) if size > 0 else iter(())
        return StreamingResponse(body, status_code=200, media_type=media_type, headers=headers)

    start, end = byte_range
    headers = {
        "Content-Range": f"bytes {start}-{end}/{size}",
        "Accept-Ranges": "bytes",
        "Content-Length": str((end - start) + 1),
    }
    return StreamingResponse(reader(start, end), status_code=206, media_type=media_type, headers=headers)


def ranged_file_response(request: Request, path: Path, *, media_type: str) -> StreamingResponse:
    """Serve a file with HTTP Range support (needed for HTML5 video seeking)."""
    path = Path(path)
    return _ranged_response(
        request,
        path.stat().st_size,
        lambda start, end: _iter_file_range(path, start, end),
        media_type,
    )


def ranged_bytes_response(request: Request, data: bytes, *, media_type: str) -> StreamingResponse:
    """Serve an in-memory payload with HTTP Range support."""
    return _ranged_response(
        request,
        len(data),
        lambda start, end: _iter_bytes_range(data, start, end),
        media_type,
    )
