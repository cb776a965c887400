"""Source map v3 decoding/encoding and offset based position tables.

A :class:`PositionMap` stores one :class:`Segment` per mapping, keyed by the
character offset of the segment in the generated text rather than by
``(line, column)``. Offsets survive rewrites that add or remove line breaks,
so the patch engine only ever shifts integers. Conversion back to the
``mappings`` string happens against the final text.

Columns are counted in Python code points. Minifier output escapes non-ASCII
characters, so this matches the UTF-16 columns the format specifies in
practice.
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Sequence

_BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {char: index for index, char in enumerate(_BASE64)}
_VLQ_SHIFT = 5
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT
_VLQ_MASK = _VLQ_CONTINUATION - 1


def encode_vlq(value: int) -> str:
    vlq = (value << 1) if value >= 0 else ((-value) << 1) | 1
    chars: List[str] = []
    while True:
        digit = vlq & _VLQ_MASK
        vlq >>= _VLQ_SHIFT
        if vlq:
            digit |= _VLQ_CONTINUATION
        chars.append(_BASE64[digit])
        if not vlq:
            return "".join(chars)


def decode_vlq_segment(segment: str) -> List[int]:
    """Decode every VLQ value of one comma-free ``mappings`` segment."""

    values: List[int] = []
    value = 0
    shift = 0
    for char in segment:
        try:
            digit = _BASE64_VALUES[char]
        except KeyError as exc:
            raise ValueError(f"Invalid base64 VLQ character {char!r}") from exc
        value += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += _VLQ_SHIFT
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = 0
        shift = 0
    if shift:
        raise ValueError(f"Truncated VLQ segment {segment!r}")
    return values


def line_starts(text: str) -> List[int]:
    starts = [0]
    index = text.find("\n")
    while index != -1:
        starts.append(index + 1)
        index = text.find("\n", index + 1)
    return starts


@dataclass(frozen=True, slots=True)
class Segment:
    """One mapping: generated offset -> original location (all zero based)."""

    offset: int
    source: int | None = None
    line: int = 0
    column: int = 0
    name: int | None = None


@dataclass(frozen=True, slots=True)
class Edit:
    """A replacement of ``[start, end)`` in the old text by ``length`` characters."""

    start: int
    end: int
    length: int

    @property
    def delta(self) -> int:
        return self.length - (self.end - self.start)


@dataclass(frozen=True, slots=True)
class PositionMap:
    entries: tuple[Segment, ...] = ()
    sources: tuple[str, ...] = ()
    names: tuple[str, ...] = ()
    sources_content: tuple[str | None, ...] | None = None
    file: str | None = None
    source_root: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        previous = -1
        for entry in self.entries:
            if entry.offset < previous:
                raise ValueError("Position map entries must be ordered by offset")
            previous = entry.offset

    @classmethod
    def from_sourcemap(cls, data: Mapping[str, Any], text: str) -> "PositionMap":
        """Decode a source map v3 mapping produced for ``text``."""

        version = data.get("version", 3)
        if version != 3:
            raise ValueError(f"Unsupported source map version: {version}")
        if "sections" in data:
            raise ValueError("Indexed source maps are not supported")

        starts = line_starts(text)
        mappings = str(data.get("mappings", ""))
        entries: List[Segment] = []
        source = line = column = name = 0
        for line_index, line_mappings in enumerate(mappings.split(";")):
            if not line_mappings:
                continue
            if line_index >= len(starts):
                raise ValueError(
                    f"Source map references generated line {line_index + 1} but text has {len(starts)} lines"
                )
            generated_column = 0
            for raw_segment in line_mappings.split(","):
                if not raw_segment:
                    continue
                fields = decode_vlq_segment(raw_segment)
                if len(fields) not in (1, 4, 5):
                    raise ValueError(f"Invalid mapping segment {raw_segment!r}")
                generated_column += fields[0]
                offset = starts[line_index] + generated_column
                if len(fields) == 1:
                    entries.append(Segment(offset=offset))
                    continue
                source += fields[1]
                line += fields[2]
                column += fields[3]
                segment_name: int | None = None
                if len(fields) == 5:
                    name += fields[4]
                    segment_name = name
                entries.append(Segment(offset=offset, source=source, line=line, column=column, name=segment_name))

        # Segments within one line are ordered, lines are ordered, but be tolerant
        # of producers that emit unsorted segments.
        entries.sort(key=lambda entry: entry.offset)

        known = {"version", "mappings", "sources", "names", "sourcesContent", "file", "sourceRoot"}
        raw_content = data.get("sourcesContent")
        return cls(
            entries=tuple(entries),
            sources=tuple(str(item) for item in data.get("sources", ())),
            names=tuple(str(item) for item in data.get("names", ())),
            sources_content=tuple(raw_content) if raw_content is not None else None,
            file=data.get("file"),
            source_root=data.get("sourceRoot"),
            extra={key: value for key, value in data.items() if key not in known},
        )

    def to_sourcemap(self, text: str) -> Dict[str, Any]:
        """Encode the entries as a source map v3 mapping for ``text``."""

        starts = line_starts(text)
        lines: List[List[str]] = [[] for _ in starts]
        previous_source = previous_line = previous_column = previous_name = 0
        current_line = -1
        previous_generated = 0
        for entry in self.entries:
            line_index = bisect_right(starts, entry.offset) - 1
            generated_column = entry.offset - starts[line_index]
            if line_index != current_line:
                current_line = line_index
                previous_generated = 0
            parts = [encode_vlq(generated_column - previous_generated)]
            previous_generated = generated_column
            if entry.source is not None:
                parts.append(encode_vlq(entry.source - previous_source))
                parts.append(encode_vlq(entry.line - previous_line))
                parts.append(encode_vlq(entry.column - previous_column))
                previous_source, previous_line, previous_column = entry.source, entry.line, entry.column
                if entry.name is not None:
                    parts.append(encode_vlq(entry.name - previous_name))
                    previous_name = entry.name
            lines[line_index].append("".join(parts))

        while lines and not lines[-1]:
            lines.pop()

        data: Dict[str, Any] = {"version": 3}
        if self.file is not None:
            data["file"] = self.file
        if self.source_root is not None:
            data["sourceRoot"] = self.source_root
        data["sources"] = list(self.sources)
        if self.sources_content is not None:
            data["sourcesContent"] = list(self.sources_content)
        data["names"] = list(self.names)
        data["mappings"] = ";".join(",".join(segments) for segments in lines)
        data.update(self.extra)
        return data

    def offsets(self) -> List[int]:
        return [entry.offset for entry in self.entries]

    def resolve(self, offset: int) -> Segment | None:
        """Return the closest entry at or before ``offset``."""

        index = bisect_right(self.offsets(), offset) - 1
        if index < 0:
            return None
        return self.entries[index]

    def original_location(self, offset: int) -> tuple[str, int, int] | None:
        entry = self.resolve(offset)
        if entry is None or entry.source is None:
            return None
        return self.sources[entry.source], entry.line, entry.column

    def remap(self, edits: Sequence[Edit]) -> "PositionMap":
        """Carry the entries across non-overlapping edits given in old-text coordinates.

        Entries before an edit keep their offset, entries at or after its end
        shift by the edit's delta, entries strictly inside a length-changing
        edit collapse onto the edit start. A same-length edit moves nothing.
        """

        if not edits:
            return self

        result: List[Segment] = []
        collapsed: List[bool] = []
        index = 0
        shift = 0
        for entry in self.entries:
            while index < len(edits) and edits[index].end <= entry.offset:
                shift += edits[index].delta
                index += 1

            is_collapsed = False
            if index < len(edits) and edits[index].start < entry.offset:
                edit = edits[index]
                if edit.delta == 0:
                    new_offset = entry.offset + shift
                else:
                    new_offset = edit.start + shift
                    is_collapsed = True
            else:
                new_offset = entry.offset + shift
                # An entry at the start of a deletion now points at whatever follows it.
                if index < len(edits) and edits[index].start == entry.offset and edits[index].length == 0:
                    is_collapsed = True

            if result and result[-1].offset == new_offset:
                if is_collapsed:
                    continue
                if collapsed[-1]:
                    result.pop()
                    collapsed.pop()

            result.append(entry if entry.offset == new_offset else replace(entry, offset=new_offset))
            collapsed.append(is_collapsed)

        return replace(self, entries=tuple(result))

    def with_sources(self, sources: Iterable[str]) -> "PositionMap":
        return replace(self, sources=tuple(sources))

    def with_file(self, file: str | None) -> "PositionMap":
        return replace(self, file=file)


__all__ = [
    "Edit",
    "PositionMap",
    "Segment",
    "decode_vlq_segment",
    "encode_vlq",
    "line_starts",
]
