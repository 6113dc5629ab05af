"""
Message formatting - splits long replies into chat-sized chunks.

Chunks concatenate back to the original text exactly. Fenced code blocks are
never broken; a fence longer than the limit becomes a chunk of its own.
Otherwise paragraph boundaries are preferred, then sentence boundaries, then a
hard cut at the limit.
"""

import re
from typing import List, Tuple

from echo_ai.settings import settings

_FENCE = re.compile(r"(```[\s\S]*?```)")
_PARAGRAPH_BREAK = re.compile(r"(\n[ \t]*\n\s*)")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])(\s+)")

# (text, is_fence)
Piece = Tuple[str, bool]


def _attach_separators(parts: List[str]) -> List[str]:
    """re.split with a capture group yields [text, sep, text, sep, ...]; glue each sep to its text."""
    out: List[str] = []
    for i in range(0, len(parts), 2):
        sep = parts[i + 1] if i + 1 < len(parts) else ""
        chunk = parts[i] + sep
        if chunk:
            out.append(chunk)
    return out


def _pieces(text: str) -> List[Piece]:
    pieces: List[Piece] = []
    for block in _FENCE.split(text):
        if not block:
            continue
        if _FENCE.fullmatch(block):
            pieces.append((block, True))
        else:
            pieces.extend((p, False) for p in _attach_separators(_PARAGRAPH_BREAK.split(block)))

    # Whitespace-only pieces ride along with their neighbour so no chunk is blank
    merged: List[Piece] = []
    pending = ""
    for piece, is_fence in pieces:
        if not piece.strip() and not is_fence:
            pending += piece
            continue
        merged.append((pending + piece, is_fence))
        pending = ""
    if pending:
        if merged:
            last, is_fence = merged[-1]
            merged[-1] = (last + pending, is_fence)
        else:
            merged.append((pending, False))
    return merged


def _hard_split(text: str, max_length: int) -> List[str]:
    return [text[i:i + max_length] for i in range(0, len(text), max_length)]


def _fit(piece: str, max_length: int) -> List[str]:
    if len(piece) <= max_length:
        return [piece]
    out: List[str] = []
    for sentence in _attach_separators(_SENTENCE_BREAK.split(piece)):
        if len(sentence) <= max_length:
            out.append(sentence)
        else:
            out.extend(_hard_split(sentence, max_length))
    return out


def smart_split(text: str, max_length: int | None = None) -> List[str]:
    """Split ``text`` into chunks of at most ``max_length`` characters (fences excepted)."""
    limit = max_length or settings.chunk_max_length
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    chunks: List[str] = []
    current = ""

    def flush() -> None:
        nonlocal current
        if current:
            chunks.append(current)
            current = ""

    for piece, is_fence in _pieces(text):
        if is_fence and len(piece) > limit:
            flush()
            chunks.append(piece)
            continue
        units = [piece] if is_fence else _fit(piece, limit)
        for unit in units:
            if len(current) + len(unit) > limit:
                flush()
            current += unit
    flush()
    return chunks


def format_parts(chunks: List[str]) -> List[str]:
    """Label chunks ``[Part i/n]`` when there is more than one."""
    if len(chunks) <= 1:
        return list(chunks)
    total = len(chunks)
    return [f"[Part {i}/{total}]\n{chunk}" for i, chunk in enumerate(chunks, start=1)]
