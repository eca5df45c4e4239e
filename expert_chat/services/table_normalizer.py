"""
services/table_normalizer.py
----------------------------
Turns tables in assistant output into one canonical, styled HTML table.

Two input encodings are recognised:
  - raw HTML rows (the text contains "<tr>" and "<td"): every cell becomes a
    header cell of a single header row and the original rows are kept
    verbatim as the table body. An enclosing <table> and its thead/tbody
    tags are replaced by the canonical shell;
  - markdown pipe-tables: header row, alignment row (":--", "--:", ":-:",
    "--"), one or more body rows.

Converted tables are wrapped in a <custom-table> marker so a generic
markdown renderer only has to pass one opaque element through. derawify()
swaps the marker for a scrollable container after rendering:

    html = derawify(markdown_to_html(normalize(content)))

Both functions are pure and never raise. Already normalized text is left
alone, so re-running either step on every re-render is harmless.
"""

import re
from typing import Callable, Optional

MARKER_TAG = "custom-table"

TABLE_OPEN = '<table class="border-collapse table-auto w-full text-sm my-4">'
HEADER_ROW_OPEN = '<tr class="bg-gray-800">'
BODY_OPEN = '<tbody class="bg-gray-700">'
TH_CLASS = "border-b border-gray-700 font-medium p-4 pl-8 pt-0 pb-3 text-gray-300 text-{align}"
TD_CLASS = "border-b border-gray-600 p-4 pl-8 text-gray-200 text-{align}"
SCROLL_CONTAINER_OPEN = '<div class="my-4 overflow-x-auto">'

_MARKER_RE = re.compile(rf"<{MARKER_TAG}>(.*?)</{MARKER_TAG}>", re.S)

# Marker blocks and already unwrapped containers are never converted again
_NORMALIZED_RE = re.compile(
    rf"<{MARKER_TAG}>.*?</{MARKER_TAG}>"
    rf"|{re.escape(SCROLL_CONTAINER_OPEN)}\s*<table\b.*?</table>\s*</div>",
    re.S,
)

# An enclosing <table> is replaced whole; bare rows may carry section tags
_HTML_TABLE_RE = re.compile(r"<table\b[^>]*>(.*?)</table>", re.S)
_HTML_ROWS_RE = re.compile(
    r"(?:<(?:thead|tbody)\b[^>]*>\s*)?"
    r"<tr[\s>].*</tr>"
    r"(?:\s*</(?:thead|tbody|tfoot)>)?",
    re.S,
)
_SECTION_TAG_RE = re.compile(r"</?(?:thead|tbody|tfoot)\b[^>]*>")
_HTML_CELL_RE = re.compile(r"<td[^>]*>(.*?)</td>")

_PIPE_ROW = r"[ \t]*\|[^\n]*\|[^\n]*"
_SEPARATOR_ROW = r"[ \t]*\|?(?:[ \t]*:?-+:?[ \t]*\|)+(?:[ \t]*:?-+:?)?[ \t]*"
_MARKDOWN_TABLE_RE = re.compile(
    rf"^{_PIPE_ROW}\n{_SEPARATOR_ROW}(?:\n{_PIPE_ROW})+$", re.M
)


def normalize(text: str) -> str:
    """Convert every table in `text` and wrap it in the marker tag."""
    parts = []
    pos = 0
    for match in _NORMALIZED_RE.finditer(text):
        parts.append(_convert(text[pos:match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(_convert(text[pos:]))
    return "".join(parts)


def derawify(text: str) -> str:
    """Replace every marker block with a horizontally scrollable container."""
    return _MARKER_RE.sub(lambda m: f"{SCROLL_CONTAINER_OPEN}{m.group(1)}</div>", text)


def render_for_display(content: str, render: Optional[Callable[[str], str]] = None) -> str:
    """
    Full display pipeline for one message body. `render` is the markdown
    renderer of the UI; without one the normalized text is unwrapped as is.
    """
    normalized = normalize(content)
    if render is not None:
        normalized = render(normalized)
    return derawify(normalized)


def _convert(segment: str) -> str:
    if "<tr>" in segment and "<td" in segment:
        span = _find_html_rows(segment)
        if span is not None:
            start, end, rows_html = span
            return (
                _convert(segment[:start])
                + _wrap(_html_fragment_table(rows_html))
                + _convert(segment[end:])
            )
    return _MARKDOWN_TABLE_RE.sub(_markdown_table, segment)


def _find_html_rows(segment: str) -> Optional[tuple[int, int, str]]:
    """Span to replace and the bare row markup inside it, or None."""
    for table in _HTML_TABLE_RE.finditer(segment):
        if "<tr" in table.group(1):
            rows_html = _SECTION_TAG_RE.sub("", table.group(1)).strip()
            return table.start(), table.end(), rows_html

    match = _HTML_ROWS_RE.search(segment)
    if match is None:
        return None
    return match.start(), match.end(), _SECTION_TAG_RE.sub("", match.group(0)).strip()


def _wrap(table_html: str) -> str:
    return f"<{MARKER_TAG}>{table_html}</{MARKER_TAG}>"


def _html_fragment_table(rows_html: str) -> str:
    # Multi-row input is folded into a single header row
    headers = "".join(
        f'<th class="{TH_CLASS.format(align="left")}">{cell}</th>'
        for cell in _HTML_CELL_RE.findall(rows_html)
    )
    return _table_shell(headers, rows_html)


def _markdown_table(match: re.Match) -> str:
    lines = match.group(0).strip().split("\n")
    headers = _split_row(lines[0])
    alignments = [_alignment(t) for t in _split_row(lines[1])]

    def align(i: int) -> str:
        return alignments[i] if i < len(alignments) else "left"

    header_html = "".join(
        f'<th class="{TH_CLASS.format(align=align(i))}">{h}</th>'
        for i, h in enumerate(headers)
    )

    body_rows = []
    for line in lines[2:]:
        cells = _split_row(line)
        cells = (cells + [""] * len(headers))[:len(headers)]
        body_rows.append(
            "<tr>"
            + "".join(
                f'<td class="{TD_CLASS.format(align=align(i))}">{c}</td>'
                for i, c in enumerate(cells)
            )
            + "</tr>"
        )

    return _wrap(_table_shell(header_html, "\n".join(body_rows)))


def _table_shell(header_cells: str, body: str) -> str:
    return (
        f"{TABLE_OPEN}\n"
        f"<thead>\n{HEADER_ROW_OPEN}{header_cells}</tr>\n</thead>\n"
        f"{BODY_OPEN}\n{body}\n</tbody>\n"
        "</table>"
    )


def _split_row(line: str) -> list[str]:
    row = line.strip()
    if row.startswith("|"):
        row = row[1:]
    if row.endswith("|"):
        row = row[:-1]
    return [cell.strip() for cell in row.split("|")]


def _alignment(token: str) -> str:
    if len(token) > 1 and token.startswith(":") and token.endswith(":"):
        return "center"
    if token.endswith(":"):
        return "right"
    return "left"
