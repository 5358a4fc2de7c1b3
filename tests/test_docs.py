"""Tests for HTML parsing and Google Docs assembly.

FakeDocument simulates how Google Docs lays out offsets (body starting at
index 1, table/row/cell markers each taking one index) so the assembler's
request ordering is checked against real offset shifting rather than
against a recorded request list.
"""

from __future__ import annotations

from collections.abc import Container
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.trailmap.errors import UpstreamError
from src.trailmap.google.docs import (
    BulletList,
    DocumentAssembler,
    GoogleDocsService,
    Heading,
    InsertOperation,
    Paragraph,
    TableBlock,
    blocks_to_text,
    chunk_requests,
    html_to_blocks,
    marketing_plan_table,
    plan_cell_fills,
    utf16_len,
)


# ── Fake Docs API ────────────────────────────────────────────────────────────


class _Call:
    def __init__(self, fn) -> None:
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeDocument:
    """In-memory Google Doc body: text runs and tables with real index math."""

    def __init__(self) -> None:
        self.elements: list[list[Any]] = [["text", "\n"]]
        self.requests: list[dict[str, Any]] = []
        self.batch_sizes: list[int] = []

    # -- layout ----------------------------------------------------------

    def _layout(self):
        index = 1
        for element in self.elements:
            if element[0] == "text":
                end = index + utf16_len(element[1])
                yield element, index, end
                index = end
            else:
                start = index
                index += 1
                for row in element[1]:
                    index += 1
                    for cell in row:
                        index += 1 + utf16_len(cell)
                index += 1
                yield element, start, index

    def _insert_text(self, index: int, text: str) -> None:
        for element, start, end in self._layout():
            if element[0] == "text":
                if start <= index < end:
                    offset = index - start
                    element[1] = element[1][:offset] + text + element[1][offset:]
                    return
                continue
            pos = start + 1
            for row in element[1]:
                pos += 1
                for c, cell in enumerate(row):
                    pos += 1
                    if pos <= index < pos + utf16_len(cell):
                        offset = index - pos
                        row[c] = cell[:offset] + text + cell[offset:]
                        return
                    pos += utf16_len(cell)
        raise ValueError(f"insertText index {index} is not inside a paragraph")

    def batch_update(self, requests: list[dict[str, Any]]) -> dict[str, Any]:
        self.batch_sizes.append(len(requests))
        for request in requests:
            self.requests.append(request)
            if "insertText" in request:
                self._insert_text(request["insertText"]["location"]["index"], request["insertText"]["text"])
            elif "insertTable" in request:
                spec = request["insertTable"]
                rows = [["\n"] * spec["columns"] for _ in range(spec["rows"])]
                self.elements.append(["table", rows])
                self.elements.append(["text", "\n"])
            elif "deleteContentRange" in request:
                self._delete_body(request["deleteContentRange"]["range"])
        return {"replies": []}

    def _delete_body(self, span: dict[str, int]) -> None:
        # Only whole-body clears are modelled
        *_, (_, _, body_end) = self._layout()
        if span != {"startIndex": 1, "endIndex": body_end - 1}:
            raise ValueError(f"unsupported deleteContentRange {span}")
        self.elements = [["text", "\n"]]

    # -- rendering -------------------------------------------------------

    @staticmethod
    def _paragraph(start: int, content: str) -> dict[str, Any]:
        return {
            "startIndex": start,
            "endIndex": start + utf16_len(content),
            "paragraph": {"elements": [{"textRun": {"content": content}}]},
        }

    def render(self) -> dict[str, Any]:
        content: list[dict[str, Any]] = [{"startIndex": 0, "endIndex": 1, "sectionBreak": {}}]
        for element, start, end in self._layout():
            if element[0] == "text":
                pos = start
                for line in element[1].splitlines(keepends=True):
                    content.append(self._paragraph(pos, line))
                    pos += utf16_len(line)
                continue
            rows = []
            pos = start + 1
            for row in element[1]:
                pos += 1
                cells = []
                for cell in row:
                    cell_start = pos
                    pos += 1
                    cells.append({
                        "startIndex": cell_start,
                        "endIndex": pos + utf16_len(cell),
                        "content": [self._paragraph(pos, cell)],
                    })
                    pos += utf16_len(cell)
                rows.append({"tableCells": cells})
            content.append({"startIndex": start, "endIndex": end, "table": {"tableRows": rows}})
        return {"body": {"content": content}}

    # -- helpers for assertions ------------------------------------------

    def paragraphs(self) -> list[str]:
        return [
            line.rstrip("\n")
            for element in self.elements
            if element[0] == "text"
            for line in element[1].splitlines()
        ]

    def tables(self) -> list[list[list[str]]]:
        return [
            [[cell.rstrip("\n") for cell in row] for row in element[1]]
            for element in self.elements
            if element[0] == "table"
        ]

    def requests_of(self, kind: str) -> list[dict[str, Any]]:
        return [r[kind] for r in self.requests if kind in r]


class FakeDocsService:
    """Docs v1 stand-in. Batch calls numbered in ``fail_on`` raise a 500."""

    def __init__(self, document: FakeDocument, fail_on: Container[int] = ()) -> None:
        self.document = document
        self.reads = 0
        self.batches = 0
        self.fail_on = fail_on

    def documents(self):
        return self

    def get(self, documentId):
        def _read():
            self.reads += 1
            return self.document.render()

        return _Call(_read)

    def batchUpdate(self, documentId, body):
        def _update():
            self.batches += 1
            if self.batches in self.fail_on:
                raise UpstreamError("google_docs", "Internal error", status_code=500)
            return self.document.batch_update(body["requests"])

        return _Call(_update)


@pytest.fixture
def document():
    return FakeDocument()


@pytest.fixture
def assembler(document):
    return DocumentAssembler(FakeDocsService(document))


# ── HTML parsing ─────────────────────────────────────────────────────────────


class TestHtmlToBlocks:
    def test_structure_in_source_order(self):
        html = """
        <html><head><title>x</title><style>p {color: red}</style></head>
        <body>
          <h1>Strategy   Report</h1>
          <p>Intro <strong>text</strong>.</p>
          <h2>Goals</h2>
          <ul><li>Grow</li><li>Retain</li></ul>
          <h4>Minor</h4>
          <script>alert(1)</script>
        </body></html>
        """
        assert html_to_blocks(html) == [
            Heading(level=1, text="Strategy Report"),
            Paragraph(text="Intro text ."),
            Heading(level=2, text="Goals"),
            BulletList(items=("Grow", "Retain")),
            Paragraph(text="Minor"),
        ]

    def test_table_with_header_row_and_padding(self):
        html = "<table><tr><th>A</th><th>B</th></tr><tr><td>1</td></tr></table>"
        blocks = html_to_blocks(html)

        assert blocks == [TableBlock(rows=(("A", "B"), ("1", None)), header=True)]

    def test_paragraph_inside_list_item_not_duplicated(self):
        html = "<ol><li><p>One</p></li><li>Two</li></ol>"
        assert html_to_blocks(html) == [BulletList(items=("One", "Two"))]

    def test_section_containers_keep_their_text(self):
        html = "<h1>Report</h1><div>Budget is 10k</div><section>Owner: Bob</section>"

        assert html_to_blocks(html) == [
            Heading(level=1, text="Report"),
            Paragraph(text="Budget is 10k"),
            Paragraph(text="Owner: Bob"),
        ]

    def test_loose_text_between_blocks_becomes_paragraphs(self):
        html = (
            "<body><h2>Plan</h2><!-- draft -->Launch in <em>May</em>."
            "<ul><li>Hire</li></ul>Then <span>review</span>.</body>"
        )

        assert html_to_blocks(html) == [
            Heading(level=2, text="Plan"),
            Paragraph(text="Launch in May."),
            BulletList(items=("Hire",)),
            Paragraph(text="Then review."),
        ]

    def test_nested_containers_walked_in_order(self):
        html = "<article><div><p>A</p><div>B <br>C</div></div><h3>D</h3></article>"

        assert html_to_blocks(html) == [
            Paragraph(text="A"),
            Paragraph(text="B C"),
            Heading(level=3, text="D"),
        ]

    def test_plain_text_fallback(self):
        assert html_to_blocks("First para\n\nSecond para") == [
            Paragraph(text="First para"),
            Paragraph(text="Second para"),
        ]

    def test_empty_input(self):
        assert html_to_blocks("") == []
        assert html_to_blocks("   ") == []


class TestMarketingPlanTable:
    PLAN = "\n".join(
        [f"### {n}. Section {n}\n- point {n}" for n in range(1, 10)]
    )

    def test_three_by_three_grid_by_phase(self):
        table = marketing_plan_table(self.PLAN)

        assert table.header is True
        assert table.rows[0] == ("Before (Prospect)", "During (Lead)", "After (Customer)")
        assert table.rows[1] == ("Section 1\npoint 1", "Section 4\npoint 4", "Section 7\npoint 7")
        assert table.rows[3] == ("Section 3\npoint 3", "Section 6\npoint 6", "Section 9\npoint 9")

    def test_missing_sections_leave_empty_cells(self):
        table = marketing_plan_table("### 1. Target Market\n**Ideal** buyers")

        assert table.rows[1] == ("Target Market\nIdeal buyers", None, None)
        assert table.rows[2] == (None, None, None)

    def test_no_sections(self):
        assert marketing_plan_table("Just prose with no numbered sections.") is None


# ── Request planning ─────────────────────────────────────────────────────────


class TestRequestPlanning:
    def test_utf16_length_counts_surrogate_pairs(self):
        assert utf16_len("abc") == 3
        assert utf16_len("é") == 1
        assert utf16_len("🚀") == 2

    def test_chunks_never_exceed_limit(self):
        requests = [{"n": i} for i in range(250)]
        chunks = list(chunk_requests(requests))

        assert [len(c) for c in chunks] == [100, 100, 50]
        assert [r for c in chunks for r in c] == requests

    def test_cell_fills_descending_and_skip_empty(self):
        table = TableBlock(rows=(("a", "b"), (None, "d")))
        anchors = [[5, 8], [12, 15]]

        fills = plan_cell_fills(anchors, table)

        assert fills == [
            InsertOperation(target_offset=15, text="d"),
            InsertOperation(target_offset=8, text="b"),
            InsertOperation(target_offset=5, text="a"),
        ]


# ── Assembly against the fake document ───────────────────────────────────────


class TestDocumentAssembler:
    @pytest.mark.asyncio
    async def test_forward_blocks_land_in_order(self, assembler, document):
        await assembler.assemble("doc-1", [
            Heading(level=1, text="Title"),
            Paragraph(text="Body text"),
            BulletList(items=("one", "two")),
        ])

        assert document.paragraphs() == ["Title", "Body text", "one", "two", ""]
        style = document.requests_of("updateParagraphStyle")[0]
        assert style["range"] == {"startIndex": 1, "endIndex": 6}
        assert style["paragraphStyle"]["namedStyleType"] == "HEADING_1"

    @pytest.mark.asyncio
    async def test_bullets_formatted_over_item_paragraphs(self, assembler, document):
        await assembler.assemble("doc-1", [
            Paragraph(text="Intro"),
            BulletList(items=("alpha", "beta")),
        ])

        bullets = document.requests_of("createParagraphBullets")
        # "Intro\n" occupies 1..7, "alpha\n" 7..13, "beta\n" 13..18
        assert bullets == [{
            "range": {"startIndex": 7, "endIndex": 17},
            "bulletPreset": "BULLET_DISC_CIRCLE_SQUARE",
        }]

    @pytest.mark.asyncio
    async def test_bullets_target_items_not_earlier_paragraph_with_same_text(self, assembler, document):
        await assembler.assemble("doc-1", [
            Paragraph(text="Next steps"),
            Heading(level=2, text="Plan"),
            BulletList(items=("Next steps", "Ship it")),
        ])

        bullets = document.requests_of("createParagraphBullets")
        # "Next steps\n" 1..12, "Plan\n" 12..17, "Next steps\n" 17..28, "Ship it\n" 28..36
        assert [b["range"] for b in bullets] == [{"startIndex": 17, "endIndex": 35}]

    @pytest.mark.asyncio
    async def test_bullets_after_table_use_recorded_offsets(self, assembler, document):
        await assembler.assemble("doc-1", [
            TableBlock(rows=(("x",),), header=False),
            BulletList(items=("x",)),
        ])

        bullets = document.requests_of("createParagraphBullets")
        # Table spans 2..8 with the cell text "x" at 5; the item paragraph follows at 8
        assert [b["range"] for b in bullets] == [{"startIndex": 8, "endIndex": 9}]

    @pytest.mark.asyncio
    async def test_table_cells_receive_their_own_text(self, assembler, document):
        grid = TableBlock(rows=(
            ("Before", "During", "After"),
            ("first cell text", None, "third"),
            ("x", "a much longer cell body", "🚀 launch"),
        ))

        await assembler.assemble("doc-1", [Heading(level=2, text="Plan"), grid])

        assert document.tables() == [[
            ["Before", "During", "After"],
            ["first cell text", "", "third"],
            ["x", "a much longer cell body", "🚀 launch"],
        ]]

    @pytest.mark.asyncio
    async def test_cell_inserts_sent_highest_offset_first(self, assembler, document):
        grid = TableBlock(rows=(("a", "b"), ("c", "d")), header=False)

        await assembler.assemble("doc-1", [grid])

        offsets = [r["location"]["index"] for r in document.requests_of("insertText")]
        assert offsets == sorted(offsets, reverse=True)
        assert document.requests_of("updateTextStyle") == []

    @pytest.mark.asyncio
    async def test_header_row_bolded_after_fill(self, assembler, document):
        grid = TableBlock(rows=(("H1", "H2"), ("v1", "v2")))

        await assembler.assemble("doc-1", [grid])

        bold = document.requests_of("updateTextStyle")
        assert len(bold) == 2
        assert all(b["textStyle"] == {"bold": True} for b in bold)
        # Each range covers exactly the header text, not the cell newline
        spans = [b["range"]["endIndex"] - b["range"]["startIndex"] for b in bold]
        assert spans == [2, 2]

    @pytest.mark.asyncio
    async def test_content_after_table_follows_it(self, assembler, document):
        await assembler.assemble("doc-1", [
            Paragraph(text="before"),
            TableBlock(rows=(("a",),), header=False),
            Paragraph(text="after"),
        ])

        texts = [e for e in document.elements]
        assert texts[0] == ["text", "before\n\n"]
        assert texts[1][0] == "table"
        assert texts[2] == ["text", "after\n\n"]

    @pytest.mark.asyncio
    async def test_large_documents_batched_by_hundred(self, assembler, document):
        blocks = [Paragraph(text=f"p{i}") for i in range(250)]

        await assembler.assemble("doc-1", blocks)

        assert document.batch_sizes == [100, 100, 50]
        assert document.paragraphs()[:3] == ["p0", "p1", "p2"]
        assert document.paragraphs()[249] == "p249"


# ── Docs service ─────────────────────────────────────────────────────────────


class TestGoogleDocsService:
    @pytest.fixture
    def services(self, document):
        drive = MagicMock()
        drive.files.return_value.create.return_value.execute.return_value = {"id": "doc-9"}
        factory = MagicMock()
        factory.drive = AsyncMock(return_value=drive)
        factory.docs = AsyncMock(return_value=FakeDocsService(document))
        return factory, drive

    @pytest.mark.asyncio
    async def test_report_document_title_folder_and_grid(self, services, document):
        factory, drive = services
        plan = "### 1. Target\n- SMBs"

        created = await GoogleDocsService(factory).create_report_document(
            "Kickoff", "<h1>Report</h1><p>Body</p>", marketing_plan=plan, folder_id="folder-1"
        )

        assert created.document_id == "doc-9"
        assert created.document_url == "https://docs.google.com/document/d/doc-9"
        body = drive.files.return_value.create.call_args.kwargs["body"]
        assert body["name"] == "Kickoff - report"
        assert body["parents"] == ["folder-1"]
        assert body["mimeType"] == "application/vnd.google-apps.document"
        assert "1-Page Marketing Plan" in document.paragraphs()
        assert document.tables()[0][1][0] == "Target\nSMBs"

    @pytest.mark.asyncio
    async def test_action_items_document_title(self, services, document):
        factory, drive = services

        await GoogleDocsService(factory).create_action_items_document(
            "Weekly", "<h2>Action Items</h2><ul><li>Ship it</li></ul>"
        )

        body = drive.files.return_value.create.call_args.kwargs["body"]
        assert body["name"] == "Meeting action items for :- Weekly"
        assert "parents" not in body
        assert document.paragraphs()[:2] == ["Action Items", "Ship it"]

    @pytest.mark.asyncio
    async def test_failed_formatting_falls_back_to_plain_text(self, services, document):
        factory, drive = services
        factory.docs = AsyncMock(return_value=FakeDocsService(document, fail_on={2}))

        created = await GoogleDocsService(factory).create_from_blocks("Notes", [
            Paragraph(text="before"),
            TableBlock(rows=(("a", "b"),), header=False),
        ])

        assert created.document_id == "doc-9"
        # The half-written paragraph is cleared before the plain insert
        assert document.requests_of("deleteContentRange") == [{"range": {"startIndex": 1, "endIndex": 8}}]
        assert document.paragraphs() == ["before", "a | b", ""]
        assert document.tables() == []
        drive.files.return_value.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_document_discarded_when_fallback_also_fails(self, services, document):
        factory, drive = services
        factory.docs = AsyncMock(return_value=FakeDocsService(document, fail_on=range(1, 10)))

        with pytest.raises(UpstreamError):
            await GoogleDocsService(factory).create_action_items_document(
                "Weekly", "<ul><li>Ship it</li></ul>"
            )

        drive.files.return_value.delete.assert_called_once_with(fileId="doc-9", supportsAllDrives=True)


class TestBlocksToText:
    def test_lines_per_block(self):
        text = blocks_to_text([
            Heading(level=1, text="Title"),
            BulletList(items=("one", "two")),
            TableBlock(rows=(("Goal\nGrow", None), ("", ""))),
        ])

        assert text == "Title\n• one\n• two\nGoal; Grow | \n"
