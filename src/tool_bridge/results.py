"""
Decode raw tool results into a small set of known shapes and render them.

Results are decoded once into one of the shape dataclasses below; rendering
dispatches on the shape, not on the tool name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Final, Mapping, Optional, Union

__all__ = [
    "RecordList",
    "CountResult",
    "NameList",
    "TextResult",
    "GenericResult",
    "ResultShape",
    "content_text",
    "unwrap_content",
    "decode_result",
    "truncate",
    "shape_result",
]

ELLIPSIS: Final = "..."

# (result key, noun used in the summary)
RECORD_KEYS: Final[tuple[tuple[str, str], ...]] = (
    ("documents", "documents"),
    ("hits", "documents"),
    ("patients", "patients"),
    ("observations", "observations"),
    ("results", "results"),
    ("items", "items"),
)
NAME_KEYS: Final[tuple[str, ...]] = ("collections", "indices", "names", "tools")

TITLE_FIELDS: Final[tuple[str, ...]] = ("title", "name", "original_filename", "filename", "id", "_id")
TEXT_FIELDS: Final[tuple[str, ...]] = ("text_content", "content", "text", "description", "summary", "body")


@dataclass(slots=True)
class RecordList:
    noun: str
    records: list[Any]
    total: Optional[int] = None
    source: Optional[str] = None  # collection / index the records came from


@dataclass(slots=True)
class CountResult:
    count: int
    source: Optional[str] = None


@dataclass(slots=True)
class NameList:
    noun: str
    names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TextResult:
    text: str


@dataclass(slots=True)
class GenericResult:
    data: Any


ResultShape = Union[RecordList, CountResult, NameList, TextResult, GenericResult]


def content_text(result: Mapping[str, Any]) -> str:
    """Join the text blocks of a ``{"content": [{"type": "text", ...}]}`` envelope."""
    blocks = result.get("content")
    if not isinstance(blocks, list):
        return ""
    return "\n".join(
        block["text"]
        for block in blocks
        if isinstance(block, Mapping) and isinstance(block.get("text"), str)
    )


def unwrap_content(payload: Any) -> Any:
    """
    Strip the tool-call content envelope.

    Text blocks are joined; when the joined text is itself JSON, the decoded
    value is returned instead. Payloads without an envelope pass through.
    """
    if not isinstance(payload, Mapping) or not isinstance(payload.get("content"), list):
        return payload
    if not all(isinstance(block, Mapping) and "type" in block for block in payload["content"]):
        return payload
    if payload.get("structuredContent") is not None:
        return payload["structuredContent"]
    text = content_text(payload)
    try:
        return json.loads(text)
    except ValueError:
        return text


def decode_result(payload: Any) -> ResultShape:
    """Classify a tool result. Unknown shapes become GenericResult."""
    payload = unwrap_content(payload)

    if isinstance(payload, str):
        return TextResult(payload)
    if isinstance(payload, list):
        if all(isinstance(item, str) for item in payload):
            return NameList("items", list(payload))
        return RecordList("items", list(payload))
    if not isinstance(payload, Mapping):
        return GenericResult(payload)

    source = payload.get("collection") or payload.get("index")
    source = str(source) if source else None

    for key, noun in RECORD_KEYS:
        value = payload.get(key)
        if key == "hits" and isinstance(value, Mapping):
            # Elasticsearch's native {"hits": {"total": ..., "hits": [...]}}
            return RecordList(noun, _hit_sources(value.get("hits")), _es_total(value.get("total")), source)
        if isinstance(value, list):
            records = _hit_sources(value) if key == "hits" else value
            total = payload.get("total")
            return RecordList(noun, records, _es_total(total), source)

    count = payload.get("count")
    if isinstance(count, int) and not isinstance(count, bool):
        return CountResult(count, source)

    for key in NAME_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return NameList(key, [_name_of(item) for item in value])

    for key in ("text", "message"):
        if isinstance(payload.get(key), str) and len(payload) <= 2:
            return TextResult(payload[key])

    return GenericResult(dict(payload))


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[: max(limit - len(ELLIPSIS), 0)].rstrip() + ELLIPSIS


def shape_result(
    payload: Any,
    *,
    max_entries: int = 3,
    max_chars: int = 300,
) -> tuple[str, list[str]]:
    """
    Render a tool result as ``(summary, entries)``.

    Record lists summarize as ``"Found N <noun>"`` followed by at most
    ``max_entries`` entries; every text field is cut to ``max_chars``.
    """
    shape = decode_result(payload)
    match shape:
        case RecordList(noun=noun, records=records, total=total, source=source):
            if not records:
                return f"No {noun} found" + (f" in {source}" if source else "") + ".", []
            summary = f"Found {len(records)} {noun}"
            if total is not None and total > len(records):
                summary += f" (of {total})"
            if source:
                summary += f" in {source}"
            entries = [
                _record_entry(index, record, max_chars)
                for index, record in enumerate(records[:max_entries], start=1)
            ]
            return summary + ":", entries
        case CountResult(count=count, source=source):
            return f"Total documents{f' in {source}' if source else ''}: {count}", []
        case NameList(noun=noun, names=names):
            if not names:
                return f"No {noun} found.", []
            return truncate(f"Available {noun} ({len(names)}): {', '.join(names)}", max_chars), []
        case TextResult(text=text):
            return truncate(text.strip(), max_chars), []
        case GenericResult(data=data):
            dumped = json.dumps(data, indent=2, default=str, ensure_ascii=False)
            return "Tool result:", [truncate(dumped, max_chars)]
    raise AssertionError(f"unhandled result shape {shape!r}")


# --- helpers ---------------------------------------------------------------
def _hit_sources(hits: Any) -> list[Any]:
    if not isinstance(hits, list):
        return []
    return [
        hit["_source"] if isinstance(hit, Mapping) and isinstance(hit.get("_source"), Mapping) else hit
        for hit in hits
    ]


def _es_total(total: Any) -> Optional[int]:
    if isinstance(total, Mapping):
        total = total.get("value")
    if isinstance(total, int) and not isinstance(total, bool):
        return total
    return None


def _name_of(item: Any) -> str:
    if isinstance(item, Mapping):
        for key in ("name", "index", "id"):
            if item.get(key) is not None:
                return str(item[key])
    return str(item)


def _record_entry(index: int, record: Any, max_chars: int) -> str:
    if not isinstance(record, Mapping):
        return f"{index}. {truncate(str(record), max_chars)}"

    title = next((str(record[k]) for k in TITLE_FIELDS if record.get(k) not in (None, "")), "Untitled")
    if isinstance(record.get("code"), Mapping) and record["code"].get("text"):
        title = str(record["code"]["text"])  # observations
    lines = [f"{index}. {truncate(title, max_chars)}"]

    text = next((record[k] for k in TEXT_FIELDS if isinstance(record.get(k), str) and record[k]), None)
    if text:
        lines.append(f"   {truncate(' '.join(text.split()), max_chars)}")
    quantity = record.get("valueQuantity")
    if isinstance(quantity, Mapping) and "value" in quantity:
        lines.append(f"   Value: {quantity['value']} {quantity.get('unit', '')}".rstrip())
    return "\n".join(lines)
