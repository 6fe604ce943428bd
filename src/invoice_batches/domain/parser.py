"""Streaming parser for newline-delimited JSON result files.

Each line is decoded on its own. A corrupt line is recorded and skipped so a
single truncated or garbled entry never loses the rest of a completed batch.
"""

import io
import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import IO, Any

from .models import ExtractionRecord, LineError, ParseResult

logger = logging.getLogger(__name__)

RAW_PREVIEW_LENGTH = 500


def _truncate(line: str) -> str:
    if len(line) > RAW_PREVIEW_LENGTH:
        return line[:RAW_PREVIEW_LENGTH] + "..."
    return line


def _iter_text_lines(stream: IO[bytes] | IO[str] | Iterable[str | bytes]) -> Iterator[str]:
    if isinstance(stream, io.TextIOBase):
        yield from stream
        return

    if hasattr(stream, "read"):
        wrapper = io.TextIOWrapper(stream, encoding="utf-8-sig", errors="replace", newline=None)
        try:
            yield from wrapper
        finally:
            # Leave the caller's stream open
            wrapper.detach()
        return

    for number, chunk in enumerate(stream):
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        if number == 0:
            chunk = chunk.lstrip("\ufeff")
        yield chunk


def iter_result_lines(
    stream: IO[bytes] | IO[str] | Iterable[str | bytes],
) -> Iterator[ExtractionRecord | LineError]:
    """Yield one ExtractionRecord or LineError per non-blank line, in file order."""
    for line_number, line in enumerate(_iter_text_lines(stream), start=1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue

        try:
            parsed = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse line {line_number}: {e}")
            yield LineError(line=line_number, raw=_truncate(line), message=str(e))
            continue

        if not isinstance(parsed, dict):
            yield LineError(
                line=line_number,
                raw=_truncate(line),
                message=f"Expected a JSON object, got {type(parsed).__name__}",
            )
            continue

        yield to_extraction_record(parsed, line_number)


def parse_result_lines(stream: IO[bytes] | IO[str] | Iterable[str | bytes]) -> ParseResult:
    """Parse a whole stream, returning the records together with line errors."""
    result = ParseResult()
    for item in iter_result_lines(stream):
        if isinstance(item, LineError):
            result.errors.append(item)
        else:
            result.records.append(item)

    if result.errors:
        logger.warning(
            f"Parsed {len(result.records)} valid lines with {len(result.errors)} errors"
        )
    else:
        logger.info(f"Parsed {len(result.records)} lines")
    return result


def parse_result_file(path: Path) -> ParseResult:
    with open(path, "rb") as f:
        return parse_result_lines(f)


def response_text(response: Any) -> str | None:
    """Pull the model's text out of a result line's ``response`` field."""
    if not response:
        return None
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        return None

    text = response.get("text")
    if isinstance(text, str):
        return text

    candidates = response.get("candidates") or []
    if candidates and isinstance(candidates[0], dict):
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if texts:
            return "".join(texts)
    return None


def _is_blocked(response: Any) -> bool:
    if not isinstance(response, dict):
        return False
    feedback = response.get("promptFeedback") or response.get("prompt_feedback") or {}
    return bool(feedback.get("blockReason") or feedback.get("block_reason"))


def to_extraction_record(data: dict[str, Any], line: int | None = None) -> ExtractionRecord:
    """Convert one decoded line (or inline response) into an ExtractionRecord."""
    key = data.get("key")
    if not key:
        key = f"line-{line}" if line is not None else "inline-unknown"

    response = data.get("response")
    return ExtractionRecord(
        key=str(key),
        text=response_text(response),
        error=data.get("error") or None,
        blocked=_is_blocked(response),
        line=line,
    )
