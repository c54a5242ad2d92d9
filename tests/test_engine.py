"""
Integration tests: page extraction, engine pipeline, and CLI.
"""

from __future__ import annotations

import json

import fitz
import pytest
from click.testing import CliRunner

from qaparser.cli import cli
from qaparser.engine import ParserConfig, ParserEngine
from qaparser.extractor import ExtractionError, PageExtractor, join_pages


SAMPLE_TEXT = "\n".join([
    "APPARATO LOCOMOTORE",
    "Scaricato da panieri.example.it",
    "1. Quante sono le vertebre cervicali?",
    "1 Sette",
    "Da cosa è formata la mandibola?",
    "Corpo e due rami",
    "Pagina 1",
    "3) Qual è l'osso più lungo",
    "del corpo umano?",
    "3 Il femore",
    "2",
    "4Quale osso forma il tallone?",
    "4 Il calcagno",
])


def _make_pdf(path, pages: list[list[str]]):
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page()
        page.insert_text((72, 72), "\n".join(lines), fontsize=11)
    doc.save(str(path))
    doc.close()


@pytest.fixture
def sample_pdf(tmp_path):
    path = tmp_path / "anatomia.pdf"
    _make_pdf(path, [
        ["SISTEMA SCHELETRICO", "1. What is X?", "1 It is Y.", "1"],
        ["Pagina 2", "2 Second question?", "2 Second answer.", "Third question", "Third answer"],
    ])
    return path


# ═══════════════════════════════════════════════════════════════════════════════
# EXTRACTOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPageExtractor:
    """Test PDF page text extraction."""

    def test_extract_pages(self, sample_pdf):
        pages = PageExtractor().extract_pages(str(sample_pdf))
        assert len(pages) == 2
        assert "1. What is X?" in pages[0]
        assert "2 Second question?" in pages[1]
        assert "1. What is X?" not in pages[1]

    def test_lines_keep_document_order(self, sample_pdf):
        pages = PageExtractor().extract_pages(str(sample_pdf))
        first = [line.strip() for line in pages[0].split("\n") if line.strip()]
        assert first == ["SISTEMA SCHELETRICO", "1. What is X?", "1 It is Y.", "1"]

    def test_page_range(self, sample_pdf):
        pages = PageExtractor().extract_pages(str(sample_pdf), page_range=(2, 2))
        assert len(pages) == 1
        assert "Second question" in pages[0]

    def test_page_range_outside_document(self, sample_pdf):
        with pytest.raises(ExtractionError, match="selects no pages"):
            PageExtractor().extract_pages(str(sample_pdf), page_range=(3, 5))

    def test_inverted_page_range(self, sample_pdf):
        with pytest.raises(ExtractionError, match="selects no pages"):
            PageExtractor().extract_pages(str(sample_pdf), page_range=(2, 1))

    def test_progress_callback(self, sample_pdf):
        calls = []
        PageExtractor().extract_pages(
            str(sample_pdf), progress_callback=lambda cur, total: calls.append((cur, total))
        )
        assert calls == [(1, 2), (2, 2)]

    def test_page_count(self, sample_pdf):
        assert PageExtractor().get_page_count(str(sample_pdf)) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PageExtractor().extract_pages(str(tmp_path / "missing.pdf"))

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        with pytest.raises(ExtractionError):
            PageExtractor().extract_pages(str(path))

    def test_join_pages(self):
        assert join_pages(["a\nb", "c"]) == "a\nb\nc\n"
        assert join_pages([]) == ""


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestParserEngine:
    """Test the full pipeline."""

    def _engine(self, tmp_path, **kwargs) -> ParserEngine:
        kwargs.setdefault("output_dir", str(tmp_path / "out"))
        kwargs.setdefault("log_level", "WARNING")
        return ParserEngine(ParserConfig(**kwargs))

    def test_parse_text(self, tmp_path):
        engine = self._engine(tmp_path, write_output=False)
        result = engine.parse_text(SAMPLE_TEXT)

        assert [q.model_dump() for q in result.questions] == [
            {
                "id": 1,
                "question": "Quante sono le vertebre cervicali?",
                "answer": "Sette",
                "options": [],
            },
            {
                "id": 2,
                "question": "Da cosa è formata la mandibola?",
                "answer": "Corpo e due rami",
                "options": [],
            },
            {
                "id": 3,
                "question": "Qual è l'osso più lungo del corpo umano?",
                "answer": "Il femore",
                "options": [],
            },
            {
                "id": 4,
                "question": "Quale osso forma il tallone?",
                "answer": "Il calcagno",
                "options": [],
            },
        ]
        assert result.validation.synthesized_question_ids == [2]
        assert result.validation.success_rate == 100.0
        assert result.parse_version.raw_line_count == 13
        assert result.parse_version.filtered_line_count == 9
        assert not (tmp_path / "out").exists()

    def test_glyph_repair_in_pipeline(self, tmp_path):
        engine = self._engine(tmp_path, write_output=False)
        result = engine.parse_text("1 Che cos'è il ðiaframma?\r\n1 Un muscolo\r\n")
        assert result.questions[0].question == "Che cos'è il diaframma?"
        assert result.questions[0].answer == "Un muscolo"

    def test_extend_policy(self, tmp_path):
        engine = self._engine(tmp_path, write_output=False, follow_up_policy="extend")
        result = engine.parse_text("1 Q\n1 A first\nA second\n")
        assert len(result.questions) == 1
        assert result.questions[0].answer == "A first A second"

    def test_unknown_policy(self, tmp_path):
        with pytest.raises(ValueError):
            self._engine(tmp_path, follow_up_policy="guess")

    def test_noise_config_file(self, tmp_path):
        noise_path = tmp_path / "noise.json"
        noise_path.write_text(json.dumps({
            "header_prefixes": ["CAPITOLO"],
            "provenance_substrings": [],
        }), encoding="utf-8")
        engine = self._engine(
            tmp_path, write_output=False, noise_config_path=str(noise_path)
        )

        result = engine.parse_text("CAPITOLO 1\n1 Q\n1 A\nPANIERI RISPOSTE\n")

        # PANIERI is no longer noise, so it becomes a recovered question
        assert [q.id for q in result.questions] == [1, 2]
        assert result.questions[1].question == "PANIERI RISPOSTE"

    def test_writes_outputs(self, tmp_path):
        engine = self._engine(tmp_path, document_id="panieri")
        engine.parse_text(SAMPLE_TEXT)

        out = tmp_path / "out"
        questions = json.loads((out / "panieri_questions.json").read_text(encoding="utf-8"))
        parsed = json.loads((out / "panieri_parsed.json").read_text(encoding="utf-8"))
        validation = json.loads((out / "panieri_validation.json").read_text(encoding="utf-8"))

        assert [q["id"] for q in questions] == [1, 2, 3, 4]
        assert parsed["questions"] == questions
        assert validation["total_questions_detected"] == 4
        assert (out / "panieri_raw_text.txt").read_text(encoding="utf-8") == SAMPLE_TEXT

    def test_skip_raw_text(self, tmp_path):
        engine = self._engine(tmp_path, document_id="doc", save_raw_text=False)
        engine.parse_text("1 Q\n1 A\n")
        assert (tmp_path / "out" / "doc_questions.json").exists()
        assert not (tmp_path / "out" / "doc_raw_text.txt").exists()

    def test_parse_pdf(self, tmp_path, sample_pdf):
        engine = self._engine(tmp_path, write_output=False)
        result = engine.parse(str(sample_pdf))

        assert [(q.id, q.question, q.answer) for q in result.questions] == [
            (1, "What is X?", "It is Y."),
            (2, "Second question?", "Second answer."),
            (3, "Third question", "Third answer"),
        ]
        assert result.document.name == "anatomia"
        assert result.document.source_file == "anatomia.pdf"
        assert result.document.total_pages == 2
        assert len(result.document.file_hash) == 64

    def test_parse_file_dispatches_on_suffix(self, tmp_path):
        text_path = tmp_path / "estratto.txt"
        text_path.write_text(SAMPLE_TEXT, encoding="utf-8")

        engine = self._engine(tmp_path, write_output=False)
        result = engine.parse_file(str(text_path))

        assert len(result.questions) == 4
        assert result.document.source_file == "estratto.txt"

    def test_missing_pdf(self, tmp_path):
        engine = self._engine(tmp_path)
        with pytest.raises(FileNotFoundError):
            engine.parse(str(tmp_path / "nope.pdf"))

    def test_extraction_failure_short_circuits(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"garbage")
        engine = self._engine(tmp_path)

        with pytest.raises(ExtractionError):
            engine.parse(str(path))
        assert not (tmp_path / "out").exists()


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the click commands."""

    def test_parse_json_output(self, tmp_path):
        text_path = tmp_path / "estratto.txt"
        text_path.write_text(SAMPLE_TEXT, encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "parse", str(text_path),
            "--output", str(tmp_path / "out"),
            "--json-output",
        ])

        assert result.exit_code == 0, result.output
        records = json.loads(result.stdout)
        assert [r["id"] for r in records] == [1, 2, 3, 4]
        assert records[0]["options"] == []

    def test_parse_pdf_table_output(self, tmp_path, sample_pdf):
        result = CliRunner().invoke(cli, [
            "parse", str(sample_pdf),
            "--output", str(tmp_path / "out"),
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        assert "Validation Report" in result.output
        assert (tmp_path / "out" / "anatomia_questions.json").exists()

    def test_parse_broken_pdf_exits_with_error(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"garbage")

        result = CliRunner().invoke(cli, [
            "parse", str(path),
            "--output", str(tmp_path / "out"),
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 1
        assert "Extraction failed" in result.output

    def test_lines(self, tmp_path):
        text_path = tmp_path / "estratto.txt"
        text_path.write_text("Pagina 1\n1 Q\n1 A\nplain\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["lines", str(text_path)])

        assert result.exit_code == 0, result.output
        assert "Kept: 3 lines, noise: 1 lines" in result.output

    def test_validate(self, tmp_path):
        engine = ParserEngine(ParserConfig(
            output_dir=str(tmp_path), document_id="doc", log_level="ERROR"
        ))
        engine.parse_text(SAMPLE_TEXT)

        result = CliRunner().invoke(cli, ["validate", str(tmp_path / "doc_parsed.json")])

        assert result.exit_code == 0, result.output
        assert "Total Questions Detected" in result.output

    def test_batch(self, tmp_path, sample_pdf):
        (tmp_path / "estratto.txt").write_text(SAMPLE_TEXT, encoding="utf-8")
        (tmp_path / "broken.pdf").write_bytes(b"garbage")

        result = CliRunner().invoke(cli, [
            "batch", str(tmp_path),
            "--output", str(tmp_path / "out"),
            "--include-txt",
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        assert "1 failures" in result.output
        assert (tmp_path / "out" / "anatomia_questions.json").exists()
        assert (tmp_path / "out" / "estratto_questions.json").exists()

    def test_info(self, sample_pdf):
        result = CliRunner().invoke(cli, ["info", str(sample_pdf)])
        assert result.exit_code == 0, result.output
        assert "PDF Information" in result.output

    def test_info_broken_pdf(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"garbage")

        result = CliRunner().invoke(cli, ["info", str(path)])

        assert result.exit_code == 1
        assert "Cannot open PDF" in result.output

    def test_parse_page_range_past_end(self, tmp_path, sample_pdf):
        result = CliRunner().invoke(cli, [
            "parse", str(sample_pdf),
            "--output", str(tmp_path / "out"),
            "--page-start", "5",
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 1
        assert "Extraction failed" in result.output
        assert not (tmp_path / "out").exists()

    def test_batch_keeps_colliding_ids_apart(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "doc b.txt").write_text("1 Q1\n1 A1\n2 Q2\n2 A2\n", encoding="utf-8")
        (src / "doc_b.txt").write_text("1 Only\n1 One\n", encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "batch", str(src),
            "--output", str(tmp_path / "out"),
            "--include-txt",
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        out = tmp_path / "out"
        first = json.loads((out / "doc_b_questions.json").read_text(encoding="utf-8"))
        second = json.loads((out / "doc_b_2_questions.json").read_text(encoding="utf-8"))
        assert [q["question"] for q in first] == ["Q1", "Q2"]
        assert [q["question"] for q in second] == ["Only"]


class TestCliNoiseConfigErrors:
    """A malformed noise config exits 1 with a readable error."""

    @pytest.fixture
    def bad_noise(self, tmp_path):
        path = tmp_path / "noise.json"
        path.write_text(json.dumps({"page_label_pattern": "^(Pagina"}), encoding="utf-8")
        return path

    def test_parse(self, tmp_path, bad_noise):
        text_path = tmp_path / "estratto.txt"
        text_path.write_text(SAMPLE_TEXT, encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "parse", str(text_path),
            "--output", str(tmp_path / "out"),
            "--noise-config", str(bad_noise),
        ])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "Invalid page_label_pattern" in result.output
        # Bracketed validation details are printed literally, not as markup
        assert "type=value_error" in result.output

    def test_lines(self, tmp_path, bad_noise):
        text_path = tmp_path / "estratto.txt"
        text_path.write_text(SAMPLE_TEXT, encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "lines", str(text_path), "--noise-config", str(bad_noise),
        ])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_batch(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "estratto.txt").write_text(SAMPLE_TEXT, encoding="utf-8")
        noise_path = tmp_path / "noise.json"
        noise_path.write_text(json.dumps({"page_label_pattern": "[x"}), encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "batch", str(src),
            "--output", str(tmp_path / "out"),
            "--include-txt",
            "--noise-config", str(noise_path),
        ])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not (tmp_path / "out").exists()
