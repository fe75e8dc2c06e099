from __future__ import annotations

import dataclasses
import re
import typing as t

from .normalizer import normalize

JsonDict = dict[str, t.Any]

SpanKind = t.Literal["text", "bold", "italic", "code"]
BlockKind = t.Literal["rule", "heading", "equation", "list", "paragraph"]
ItemKind = t.Literal["bullet", "numbered", "text"]

RULE_TOKENS = ("---", "***", "___")
HEADING_PREFIXES = (("### ", 3), ("## ", 2), ("# ", 1))

_BLOCK_EQUATION = re.compile(
    r"^[A-Za-z][\w\s]*=\s*[½⅓⅔¼¾⅕⅖⅗⅘⅙⅚⅛⅜⅝⅞\d\w²³⁴⁵⁶⁷⁸⁹⁰+\-*/()×÷√αβγδεθλμνπρστφψω]+$",
    re.ASCII,
)
_INLINE_MATH = re.compile(r"[½⅓⅔¼¾⅕⅙⅛²³⁴⁵⁶⁷⁸⁹⁰×÷√]|[a-zA-Z]\s*[²³⁴⁵]")
_BULLET = re.compile(r"^[-•*]\s")
_BULLET_PREFIX = re.compile(r"^[-•*]\s+")
_NUMBERED = re.compile(r"^\d+\.\s")
_NUMBERED_ITEM = re.compile(r"^(\d+)\.\s+(.*)$")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")

_SPAN_PATTERNS: tuple[tuple[SpanKind, re.Pattern[str]], ...] = (
    ("bold", re.compile(r"\*\*(.+?)\*\*")),
    ("italic", re.compile(r"(?<!\*)\*([^*]+?)\*(?!\*)")),
    ("code", re.compile(r"`([^`]+?)`")),
)


@dataclasses.dataclass(frozen=True)
class Span:
    kind: SpanKind
    text: str

    def to_dict(self) -> JsonDict:
        return {"kind": self.kind, "text": self.text}


@dataclasses.dataclass(frozen=True)
class ListItem:
    kind: ItemKind
    spans: tuple[Span, ...]
    label: str | None = None

    def to_dict(self) -> JsonDict:
        return {"kind": self.kind, "label": self.label, "spans": [s.to_dict() for s in self.spans]}


@dataclasses.dataclass(frozen=True)
class Block:
    kind: BlockKind
    text: str = ""
    level: int = 0
    lines: tuple[tuple[Span, ...], ...] = ()
    items: tuple[ListItem, ...] = ()

    @property
    def spans(self) -> tuple[Span, ...]:
        return tuple(span for line in self.lines for span in line)

    def to_dict(self) -> JsonDict:
        out: JsonDict = {"kind": self.kind}
        if self.kind == "heading":
            out["level"] = self.level
        if self.kind in ("heading", "equation"):
            out["text"] = self.text
        if self.kind in ("heading", "paragraph"):
            out["lines"] = [[s.to_dict() for s in line] for line in self.lines]
        if self.kind == "list":
            out["items"] = [item.to_dict() for item in self.items]
        return out


def looks_like_block_equation(text: str) -> bool:
    """Paragraph-level test: a short `x = ...` formula, or any short line with `=`."""
    trimmed = text.strip()
    if _BLOCK_EQUATION.match(trimmed):
        return True
    return "=" in trimmed and len(trimmed) < 50 and " is " not in trimmed and " the " not in trimmed


def looks_like_inline_equation(line: str) -> bool:
    """Line-level test inside a plain paragraph; stricter than the block test."""
    trimmed = line.strip()
    return (
        "=" in trimmed
        and len(trimmed) < 40
        and " is " not in trimmed
        and " the " not in trimmed
        and " and " not in trimmed
        and bool(_INLINE_MATH.search(trimmed))
    )


def is_list_line(line: str) -> bool:
    trimmed = line.strip()
    return bool(_BULLET.match(trimmed) or _NUMBERED.match(trimmed))


def parse_inline(text: str) -> tuple[Span, ...]:
    spans: list[Span] = []
    remaining = text
    while remaining:
        earliest: re.Match[str] | None = None
        earliest_kind: SpanKind = "text"
        for kind, pattern in _SPAN_PATTERNS:
            # Search the remainder itself so look-behinds never see consumed text.
            match = pattern.search(remaining)
            if match and (earliest is None or match.start() < earliest.start()):
                earliest = match
                earliest_kind = kind
        if earliest is None:
            spans.append(Span("text", remaining))
            break
        if earliest.start() > 0:
            spans.append(Span("text", remaining[: earliest.start()]))
        spans.append(Span(earliest_kind, earliest.group(1)))
        remaining = remaining[earliest.end():]
    return tuple(spans)


def _render_list(lines: list[str]) -> Block:
    items: list[ListItem] = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        if _BULLET.match(trimmed):
            items.append(ListItem("bullet", parse_inline(_BULLET_PREFIX.sub("", trimmed, count=1)), "•"))
            continue
        numbered = _NUMBERED_ITEM.match(trimmed)
        if numbered:
            items.append(ListItem("numbered", parse_inline(numbered.group(2)), f"{numbered.group(1)}."))
            continue
        items.append(ListItem("text", parse_inline(trimmed)))
    return Block("list", items=tuple(items))


def _render_paragraph(lines: list[str]) -> list[Block]:
    blocks: list[Block] = []
    pending: list[tuple[Span, ...]] = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        if looks_like_inline_equation(trimmed):
            if pending:
                blocks.append(Block("paragraph", lines=tuple(pending)))
                pending = []
            blocks.append(Block("equation", text=trimmed))
            continue
        pending.append(parse_inline(trimmed))
    if pending:
        blocks.append(Block("paragraph", lines=tuple(pending)))
    return blocks


def render_paragraph(paragraph: str) -> list[Block]:
    trimmed = paragraph.strip()
    if not trimmed:
        return []
    if trimmed in RULE_TOKENS:
        return [Block("rule")]
    for prefix, level in HEADING_PREFIXES:
        if trimmed.startswith(prefix):
            content = trimmed[len(prefix):]
            return [Block("heading", text=content, level=level, lines=(parse_inline(content),))]
    if looks_like_block_equation(trimmed):
        return [Block("equation", text=trimmed)]
    lines = trimmed.split("\n")
    if any(is_list_line(line) for line in lines):
        return [_render_list(lines)]
    return _render_paragraph(lines)


def render(text: str | None) -> list[Block]:
    normalized = normalize(text).replace("\r\n", "\n")
    blocks: list[Block] = []
    for paragraph in _PARAGRAPH_BREAK.split(normalized):
        blocks.extend(render_paragraph(paragraph))
    return blocks
