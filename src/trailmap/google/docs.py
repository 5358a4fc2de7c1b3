"""Google Docs assembly: HTML -> content blocks -> batchUpdate requests.

Google Docs addresses content by absolute character offset (UTF-16 code
units, body starting at index 1). Every insert shifts everything after it,
so two strategies are used:

- Forward assembly: headings, paragraphs and bullet items are appended at a
  locally tracked cursor that advances by the inserted length before the
  next request is computed.
- Skeleton then fill: a table is inserted empty, the document is re-read to
  learn each cell's anchor offset, and the cell texts are inserted in
  strictly descending offset order so no insert moves an anchor that has not
  been written yet.

Table header bold re-reads the document first instead of trusting the
cursor. Bullet item offsets are recorded as the items are written and
confirmed against a re-read before the list formatting is applied.
Requests are sent in chunks of at most 100, applied strictly in order.
When formatted assembly fails the body is rewritten as plain text.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import structlog
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from pydantic import BaseModel

from src.trailmap.errors import UpstreamError
from src.trailmap.google.auth import GoogleServiceFactory, execute

logger = structlog.get_logger(__name__)

SERVICE_NAME = "google_docs"
MAX_REQUESTS_PER_BATCH = 100
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"
DOCUMENT_URL = "https://docs.google.com/document/d/{document_id}"
BULLET_PRESET = "BULLET_DISC_CIRCLE_SQUARE"
HEADING_STYLES = {1: "HEADING_1", 2: "HEADING_2", 3: "HEADING_3"}


# ── Content blocks ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class BulletList:
    items: tuple[str, ...]


@dataclass(frozen=True)
class TableBlock:
    """R x C grid. ``None`` or empty cells are left blank in the document."""

    rows: tuple[tuple[str | None, ...], ...]
    header: bool = True

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)


Block = Union[Heading, Paragraph, BulletList, TableBlock]


@dataclass(frozen=True)
class InsertOperation:
    """Text to insert at an absolute document offset."""

    target_offset: int
    text: str

    def to_request(self) -> dict[str, Any]:
        return {
            "insertText": {
                "location": {"index": self.target_offset},
                "text": self.text,
            }
        }


class CreatedDocument(BaseModel):
    document_id: str
    document_url: str


# ── HTML parsing ─────────────────────────────────────────────────────────────


_WHITESPACE = re.compile(r"\s+")
_HEADING_TAGS = {"h1", "h2", "h3"}
_PARAGRAPH_TAGS = {"p", "h4", "h5", "h6", "pre", "dl"}
_LIST_TAGS = {"ul", "ol"}
_SECTION_TAGS = {
    "div", "section", "article", "main", "header", "footer",
    "aside", "nav", "blockquote", "figure", "form", "center",
}
_ROOT_TAGS = {"html", "body"}
_BLOCK_LEVEL = sorted(_HEADING_TAGS | _PARAGRAPH_TAGS | _LIST_TAGS | _SECTION_TAGS | {"table"})


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _parse_table(table: Any) -> TableBlock | None:
    rows: list[tuple[str | None, ...]] = []
    header = False
    for index, tr in enumerate(table.find_all("tr")):
        cells = tr.find_all(["td", "th"])
        if index == 0 and cells and all(cell.name == "th" for cell in cells):
            header = True
        rows.append(tuple(_clean(cell.get_text(" ")) or None for cell in cells))

    rows = [row for row in rows if row]
    if not rows:
        return None
    width = max(len(row) for row in rows)
    padded = tuple(row + (None,) * (width - len(row)) for row in rows)
    return TableBlock(rows=padded, header=header)


class _BlockCollector:
    """Walks the parsed tree, turning block tags and loose text into blocks.

    Text that sits directly inside a section container (or between block
    tags) is buffered and emitted as a paragraph at the next block boundary.
    """

    def __init__(self) -> None:
        self.blocks: list[Block] = []
        self.structured = False
        self._inline: list[str] = []

    def flush(self) -> None:
        text = _clean("".join(self._inline))
        self._inline.clear()
        if text:
            self.blocks.append(Paragraph(text=text))

    def walk(self, node: Tag) -> None:
        for child in node.children:
            if isinstance(child, NavigableString):
                if not isinstance(child, PreformattedString):
                    self._inline.append(str(child))
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name
            if name in _ROOT_TAGS:
                self.walk(child)
            elif name in _BLOCK_LEVEL:
                self.structured = True
                self.flush()
                self._block(child)
            elif name == "br":
                self._inline.append(" ")
            elif child.find(_BLOCK_LEVEL) is not None:
                # Inline wrapper around block content, e.g. <a><div>..</div></a>
                self.walk(child)
            else:
                self._inline.append(child.get_text())

    def _block(self, element: Tag) -> None:
        name = element.name
        if name in _SECTION_TAGS:
            self.walk(element)
            self.flush()
        elif name in _HEADING_TAGS:
            text = _clean(element.get_text(" "))
            if text:
                self.blocks.append(Heading(level=int(name[1]), text=text))
        elif name in _LIST_TAGS:
            items = tuple(
                text
                for li in element.find_all("li", recursive=False)
                if (text := _clean(li.get_text(" ")))
            )
            if items:
                self.blocks.append(BulletList(items=items))
        elif name == "table":
            table = _parse_table(element)
            if table is not None:
                self.blocks.append(table)
        else:
            text = _clean(element.get_text(" "))
            if text:
                self.blocks.append(Paragraph(text=text))


def html_to_blocks(html: str) -> list[Block]:
    """Parse generated HTML into document blocks in source order.

    h1-h3 become headings (h4-h6 are treated as paragraphs), ``ul``/``ol``
    become bullet lists, tables keep their grid. div/section/article and
    similar containers are walked, and any text they hold outside a block
    tag becomes its own paragraph. Script and style content is dropped.
    When no block-level structure is found the visible text is returned as
    paragraphs split on blank lines.
    """
    if not html or not html.strip():
        return []

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head", "title", "meta", "template"]):
        tag.decompose()

    collector = _BlockCollector()
    collector.walk(soup)
    collector.flush()
    if collector.structured:
        return collector.blocks

    plain = soup.get_text("\n")
    paragraphs = [_clean(chunk) for chunk in re.split(r"\n\s*\n", plain)]
    return [Paragraph(text=text) for text in paragraphs if text]


_SECTION_HEADING = re.compile(r"^#{1,6}\s*(\d)\.\s*(.+?)\s*$")
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_PHASES = ("Before (Prospect)", "During (Lead)", "After (Customer)")


def _strip_markdown(text: str) -> str:
    return _clean(_BULLET_PREFIX.sub("", text).replace("**", "").replace("__", ""))


def marketing_plan_table(plan: str) -> TableBlock | None:
    """Lay the nine numbered marketing-plan sections out as a 3x3 grid.

    Columns are the Before / During / After phases; sections 1-3, 4-6 and
    7-9 fill them top to bottom. Sections missing from the text leave their
    cell empty. Returns None when no numbered section is found.
    """
    sections: dict[int, list[str]] = {}
    current: int | None = None
    for line in plan.splitlines():
        match = _SECTION_HEADING.match(line.strip())
        if match:
            current = int(match.group(1))
            sections[current] = [match.group(2).replace("**", "").strip()]
            continue
        if line.strip().startswith("#"):
            current = None
            continue
        if current is not None and line.strip():
            sections[current].append(_strip_markdown(line))

    if not sections:
        return None

    def cell(number: int) -> str | None:
        lines = sections.get(number)
        if not lines:
            return None
        return "\n".join(line for line in lines if line)

    rows = [tuple(_PHASES)]
    for offset in range(3):
        rows.append(tuple(cell(phase * 3 + offset + 1) for phase in range(3)))
    return TableBlock(rows=tuple(rows), header=True)


# ── Request planning ─────────────────────────────────────────────────────────


def utf16_len(text: str) -> int:
    """Length in UTF-16 code units, the unit Docs offsets are measured in."""
    return len(text.encode("utf-16-le")) // 2


def chunk_requests(
    requests: Sequence[dict[str, Any]],
    size: int = MAX_REQUESTS_PER_BATCH,
) -> Iterator[list[dict[str, Any]]]:
    for start in range(0, len(requests), size):
        yield list(requests[start:start + size])


def plan_cell_fills(
    anchors: Sequence[Sequence[int]],
    table: TableBlock,
) -> list[InsertOperation]:
    """Pair cell anchors with cell text, highest offset first.

    Args:
        anchors: ``anchors[r][c]`` is the start offset of cell (r, c).
        table: The grid whose texts fill the cells.
    """
    operations = []
    for r, row in enumerate(table.rows):
        for c, text in enumerate(row):
            if not text:
                continue
            operations.append(InsertOperation(target_offset=anchors[r][c], text=text))
    operations.sort(key=lambda op: op.target_offset, reverse=True)
    return operations


@dataclass
class _ForwardPlan:
    """Requests accumulated for the forward (append) phase."""

    cursor: int = 1
    requests: list[dict[str, Any]] = field(default_factory=list)

    def insert(self, text: str) -> tuple[int, int]:
        start = self.cursor
        self.requests.append(InsertOperation(target_offset=start, text=text).to_request())
        self.cursor += utf16_len(text)
        return start, self.cursor

    def heading(self, block: Heading) -> None:
        start, end = self.insert(block.text + "\n")
        self.requests.append({
            "updateParagraphStyle": {
                "range": {"startIndex": start, "endIndex": end - 1},
                "paragraphStyle": {"namedStyleType": HEADING_STYLES.get(block.level, "HEADING_3")},
                "fields": "namedStyleType",
            }
        })


# ── Document structure helpers ───────────────────────────────────────────────


def _body_content(document: dict[str, Any]) -> list[dict[str, Any]]:
    return document.get("body", {}).get("content", [])


def _last_table(document: dict[str, Any]) -> dict[str, Any]:
    tables = [element for element in _body_content(document) if "table" in element]
    if not tables:
        raise LookupError("No table found in document after insertTable")
    return tables[-1]["table"]


def cell_anchors(table: dict[str, Any]) -> list[list[int]]:
    """Start offset of the first paragraph in every cell of a table element."""
    return [
        [cell["content"][0]["startIndex"] for cell in row.get("tableCells", [])]
        for row in table.get("tableRows", [])
    ]


def _paragraph_text(paragraph: dict[str, Any]) -> str:
    return "".join(
        element.get("textRun", {}).get("content", "")
        for element in paragraph.get("elements", [])
    ).rstrip("\n")


def _end_cursor(document: dict[str, Any]) -> int:
    content = _body_content(document)
    if not content:
        return 1
    # The final newline of the body can never be inserted after
    return max(1, content[-1]["endIndex"] - 1)


def header_bold_requests(table: dict[str, Any]) -> list[dict[str, Any]]:
    rows = table.get("tableRows", [])
    if not rows:
        return []
    requests = []
    for cell in rows[0].get("tableCells", []):
        for element in cell.get("content", []):
            paragraph = element.get("paragraph")
            if paragraph is None or not _paragraph_text(paragraph):
                continue
            requests.append({
                "updateTextStyle": {
                    "range": {
                        "startIndex": element["startIndex"],
                        "endIndex": element["endIndex"] - 1,
                    },
                    "textStyle": {"bold": True},
                    "fields": "bold",
                }
            })
    return requests


def bullet_requests(
    document: dict[str, Any],
    item_starts: Collection[int],
) -> list[dict[str, Any]]:
    """Format the bullet item paragraphs found at the recorded offsets.

    Item offsets are captured when the items are written. The document is
    append-only during assembly, so they still point at the item paragraphs;
    the re-read supplies each paragraph's real end. Adjacent items are
    merged into one range.
    """
    wanted = set(item_starts)
    ranges: list[list[int]] = []
    found = 0
    for element in _body_content(document):
        if "paragraph" not in element or element.get("startIndex") not in wanted:
            continue
        start, end = element["startIndex"], element["endIndex"]
        if ranges and ranges[-1][1] == start:
            ranges[-1][1] = end
        else:
            ranges.append([start, end])
        found += 1

    if found < len(wanted):
        logger.warning(
            "google_docs.bullets_unmatched",
            expected=len(wanted),
            matched=found,
        )

    return [
        {
            "createParagraphBullets": {
                "range": {"startIndex": start, "endIndex": end - 1},
                "bulletPreset": BULLET_PRESET,
            }
        }
        for start, end in ranges
    ]


# ── Assembler ────────────────────────────────────────────────────────────────


def blocks_to_text(blocks: Sequence[Block]) -> str:
    """Flatten blocks to plain lines: bullets prefixed, table rows pipe-joined."""
    lines: list[str] = []
    for block in blocks:
        if isinstance(block, (Heading, Paragraph)):
            lines.append(block.text)
        elif isinstance(block, BulletList):
            lines.extend(f"• {item}" for item in block.items)
        elif isinstance(block, TableBlock):
            for row in block.rows:
                lines.append(" | ".join((cell or "").replace("\n", "; ") for cell in row))
    return "\n".join(line for line in lines if line.strip(" |")) + "\n"


class DocumentAssembler:
    """Writes a block sequence into an existing, empty Google Doc.

    Args:
        docs_service: googleapiclient Docs v1 Resource.
    """

    def __init__(self, docs_service: Any) -> None:
        self._docs = docs_service

    async def _read(self, document_id: str) -> dict[str, Any]:
        return await execute(self._docs.documents().get(documentId=document_id), SERVICE_NAME)

    async def _apply(self, document_id: str, requests: Sequence[dict[str, Any]]) -> int:
        """Send requests in ordered chunks. Returns the number of batch calls."""
        batches = 0
        for chunk in chunk_requests(requests):
            await execute(
                self._docs.documents().batchUpdate(
                    documentId=document_id,
                    body={"requests": chunk},
                ),
                SERVICE_NAME,
            )
            batches += 1
        return batches

    async def _write_table(self, document_id: str, table: TableBlock) -> int:
        """Skeleton-then-fill. Returns the cursor after the table."""
        await self._apply(document_id, [{
            "insertTable": {
                "rows": table.row_count,
                "columns": table.column_count,
                "endOfSegmentLocation": {"segmentId": ""},
            }
        }])

        skeleton = await self._read(document_id)
        fills = plan_cell_fills(cell_anchors(_last_table(skeleton)), table)
        await self._apply(document_id, [op.to_request() for op in fills])

        filled = await self._read(document_id)
        if table.header:
            await self._apply(document_id, header_bold_requests(_last_table(filled)))
        return _end_cursor(filled)

    async def assemble(self, document_id: str, blocks: Sequence[Block]) -> None:
        plan = _ForwardPlan()
        item_starts: list[int] = []

        for block in blocks:
            if isinstance(block, Heading):
                if block.text:
                    plan.heading(block)
            elif isinstance(block, Paragraph):
                if block.text:
                    plan.insert(block.text + "\n")
            elif isinstance(block, BulletList):
                for item in block.items:
                    start, _ = plan.insert(item + "\n")
                    item_starts.append(start)
            elif isinstance(block, TableBlock):
                if not block.rows or block.column_count == 0:
                    continue
                await self._apply(document_id, plan.requests)
                cursor = await self._write_table(document_id, block)
                plan = _ForwardPlan(cursor=cursor)

        await self._apply(document_id, plan.requests)

        if item_starts:
            document = await self._read(document_id)
            await self._apply(document_id, bullet_requests(document, item_starts))

        logger.info(
            "google_docs.assembled",
            document_id=document_id,
            blocks=len(blocks),
            bullets=len(item_starts),
        )

    async def write_plain_text(self, document_id: str, text: str) -> None:
        """Replace whatever the body holds with a single unformatted insert."""
        end = _end_cursor(await self._read(document_id))
        requests: list[dict[str, Any]] = []
        if end > 1:
            requests.append({"deleteContentRange": {"range": {"startIndex": 1, "endIndex": end}}})
        requests.append(InsertOperation(target_offset=1, text=text).to_request())
        await self._apply(document_id, requests)


# ── Docs service ─────────────────────────────────────────────────────────────


class GoogleDocsService:
    """Creates fresh Google Docs and fills them from generated content."""

    def __init__(self, services: GoogleServiceFactory) -> None:
        self._services = services

    async def create_document(self, title: str, folder_id: str | None = None) -> CreatedDocument:
        """Create an empty Doc through Drive so it lands in ``folder_id``."""
        drive = await self._services.drive()
        body: dict[str, Any] = {"name": title, "mimeType": DOCUMENT_MIME_TYPE}
        if folder_id:
            body["parents"] = [folder_id]

        created = await execute(
            drive.files().create(body=body, fields="id", supportsAllDrives=True),
            SERVICE_NAME,
        )
        document_id = created.get("id")
        if not document_id:
            raise LookupError("Drive returned no id for the created document")

        logger.info("google_docs.created", document_id=document_id, title=title)
        return CreatedDocument(
            document_id=document_id,
            document_url=DOCUMENT_URL.format(document_id=document_id),
        )

    async def _discard(self, document_id: str) -> None:
        drive = await self._services.drive()
        try:
            await execute(
                drive.files().delete(fileId=document_id, supportsAllDrives=True),
                SERVICE_NAME,
            )
        except UpstreamError as exc:
            logger.error("google_docs.discard_failed", document_id=document_id, error=str(exc))
        else:
            logger.info("google_docs.discarded", document_id=document_id)

    async def create_from_blocks(
        self,
        title: str,
        blocks: Sequence[Block],
        folder_id: str | None = None,
    ) -> CreatedDocument:
        """Create a Doc and write ``blocks`` into it.

        If formatted assembly fails the body is rewritten as plain text. If
        that fails too the empty Doc is deleted and the error propagates.
        """
        created = await self.create_document(title, folder_id)
        assembler = DocumentAssembler(await self._services.docs())
        try:
            await assembler.assemble(created.document_id, blocks)
        except (UpstreamError, LookupError) as exc:
            logger.warning(
                "google_docs.formatted_insert_failed",
                document_id=created.document_id,
                error=str(exc),
            )
            try:
                await assembler.write_plain_text(created.document_id, blocks_to_text(blocks))
            except (UpstreamError, LookupError):
                await self._discard(created.document_id)
                raise
            logger.info("google_docs.plain_text_fallback", document_id=created.document_id)
        return created

    async def create_report_document(
        self,
        meeting_name: str,
        html_content: str,
        marketing_plan: str | None = None,
        folder_id: str | None = None,
    ) -> CreatedDocument:
        """Strategy report: the HTML document followed by the marketing-plan grid."""
        blocks = html_to_blocks(html_content)
        if marketing_plan:
            grid = marketing_plan_table(marketing_plan)
            if grid is not None:
                blocks.append(Heading(level=2, text="1-Page Marketing Plan"))
                blocks.append(grid)
        return await self.create_from_blocks(f"{meeting_name} - report", blocks, folder_id)

    async def create_action_items_document(
        self,
        meeting_name: str,
        html_content: str,
        folder_id: str | None = None,
    ) -> CreatedDocument:
        return await self.create_from_blocks(
            f"Meeting action items for :- {meeting_name}",
            html_to_blocks(html_content),
            folder_id,
        )
