"""Random payload used by the download test and chunk count parsing."""

import itertools
import secrets
from typing import Iterator, Optional

PAYLOAD_CHUNK_SIZE = 1024 * 1024
MAX_CHUNKS = 1024


def generate_payload(size: int = PAYLOAD_CHUNK_SIZE) -> bytes:
    """Generate the random block reused by every download response."""
    return secrets.token_bytes(size)


def parse_chunk_count(raw_value: Optional[str], default: int) -> int:
    """Translate the ``ckSize`` query value into a chunk count.

    Raises ``ValueError`` for values that are not base-10 integers so the
    caller can log the fallback to ``default``. Values above ``MAX_CHUNKS``
    are capped and negative values yield zero chunks.
    """
    if raw_value is None or raw_value == "":
        return default
    text = raw_value.strip()
    if not text.lstrip("+-").isdigit() or not text.isascii():
        raise ValueError(f"Invalid chunk size: {raw_value!r}")
    return max(0, min(int(text), MAX_CHUNKS))


def repeat_payload(payload: bytes, chunks: int) -> Iterator[bytes]:
    """Yield the same payload object ``chunks`` times."""
    return itertools.repeat(payload, chunks)
