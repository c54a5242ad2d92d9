"""
Parser Engine
=============
Main orchestrator that combines page extraction, normalization, state machine
parsing, validation, and output formatting into a complete pipeline.

Usage:
    engine = ParserEngine(config)
    result = engine.parse("path/to/panieri.pdf")
    # result is a ParseResult; result.questions_dump() is the record array

Architecture:
    PDF → PageExtractor → page texts → normalize → lines →
    StateMachineParser → QuestionRecords → ValidationEngine → ParseResult (JSON)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import __version__
from .extractor import PageExtractor, join_pages
from .models import DocumentMetadata, ParseResult, ParseVersion
from .normalizer import DEFAULT_NOISE, NoiseConfig, normalize, split_lines
from .state_machine import StateMachineParser
from .validator import ValidationEngine

logger = logging.getLogger(__name__)


def make_document_id(name: str) -> str:
    """Turn a document name into an id safe to use in output file names."""
    clean_name = "".join(
        c if c.isalnum() or c in "-_" else "_"
        for c in name
    )
    return clean_name[:50] or "document"


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Output settings
    output_dir: str = "output"
    write_output: bool = True
    save_raw_text: bool = True

    # Document metadata
    document_name: str = ""
    document_id: Optional[str] = None

    # Processing
    page_range: Optional[tuple[int, int]] = None
    noise_config_path: Optional[str] = None
    follow_up_policy: str = "promote"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ParserEngine:
    """
    Main parsing engine.

    Orchestrates the full pipeline:
        1. Page extraction (PDF only)
        2. Normalization and noise filtering
        3. State machine parsing
        4. Validation
        5. Output formatting

    Holds no per-document state, so one engine can parse many documents.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self._setup_logging()
        self.noise = self._load_noise()
        self.parser = StateMachineParser.from_policy_name(
            self.config.follow_up_policy
        )

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Configure root logger for the package
        pkg_logger = logging.getLogger("qaparser")
        pkg_logger.setLevel(log_level)

        # Console handler
        if not pkg_logger.handlers:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            pkg_logger.addHandler(console)

        for handler in pkg_logger.handlers:
            handler.setLevel(log_level)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            already_attached = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path.resolve()
                for h in pkg_logger.handlers
            )
            if not already_attached:
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(formatter)
                pkg_logger.addHandler(file_handler)

    def _load_noise(self) -> NoiseConfig:
        if self.config.noise_config_path:
            return NoiseConfig.from_file(self.config.noise_config_path)
        return DEFAULT_NOISE

    def parse(
        self,
        pdf_path: str,
        progress_callback: Optional[callable] = None,
    ) -> ParseResult:
        """
        Parse a PDF file into question records.

        Args:
            pdf_path: Path to the PDF file to parse.
            progress_callback: Callback(page_num, total_pages) called on each page.

        Returns:
            ParseResult containing all questions, metadata, and validation.

        Raises:
            FileNotFoundError: If PDF file doesn't exist.
            ExtractionError: If PDF cannot be opened or read.
        """
        pdf_path = os.path.abspath(pdf_path)

        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        logger.info(f"Starting parse of: {pdf_path}")

        # ── Step 1: Extract pages (failures stop here) ────────────────
        logger.info("Phase 1: Page extraction")
        extractor = PageExtractor()
        pages = extractor.extract_pages(
            pdf_path,
            page_range=self.config.page_range,
            progress_callback=progress_callback,
        )

        metadata = self._build_metadata(pdf_path)
        metadata.total_pages = extractor.get_page_count(pdf_path)

        return self.parse_text(join_pages(pages), metadata)

    def parse_file(
        self,
        path: str,
        progress_callback: Optional[callable] = None,
    ) -> ParseResult:
        """Parse a PDF, or a ``.txt`` file holding already-extracted text."""
        if Path(path).suffix.lower() == ".txt":
            return self.parse_text_file(path)
        return self.parse(path, progress_callback=progress_callback)

    def parse_text_file(self, text_path: str) -> ParseResult:
        """Parse a UTF-8 text file that already holds extracted page text."""
        text_path = os.path.abspath(text_path)

        if not os.path.exists(text_path):
            raise FileNotFoundError(f"Text file not found: {text_path}")

        logger.info(f"Starting parse of: {text_path}")
        raw_text = Path(text_path).read_text(encoding="utf-8")
        return self.parse_text(raw_text, self._build_metadata(text_path))

    def parse_text(
        self,
        raw_text: str,
        metadata: Optional[DocumentMetadata] = None,
    ) -> ParseResult:
        """
        Parse already-extracted text into question records.

        Args:
            raw_text: Page texts joined with newlines.
            metadata: Source description; defaults to the configured name.

        Returns:
            ParseResult containing all questions, metadata, and validation.
        """
        start_time = time.time()
        metadata = metadata or DocumentMetadata(
            name=self.config.document_name or "text"
        )

        # ── Step 2: Normalization ─────────────────────────────────────
        logger.info("Phase 2: Normalization")
        raw_line_count = len(split_lines(raw_text))
        lines = list(normalize(raw_text, self.noise))
        logger.info(
            f"Kept {len(lines)} of {raw_line_count} lines "
            f"({raw_line_count - len(lines)} noise)"
        )

        # ── Step 3: State machine parsing ─────────────────────────────
        logger.info("Phase 3: State machine parsing")
        state = self.parser.run(lines)
        questions = state.questions

        # ── Step 4: Validation ────────────────────────────────────────
        logger.info("Phase 4: Validation")
        validation = ValidationEngine().validate(questions, state)

        # ── Step 5: Build result ──────────────────────────────────────
        result = ParseResult(
            document=metadata,
            parse_version=ParseVersion(
                parser_version=__version__,
                raw_line_count=raw_line_count,
                filtered_line_count=len(lines),
                structured_question_count=len(questions),
            ),
            questions=questions,
            validation=validation,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s: "
            f"{len(questions)} questions extracted"
        )

        # ── Step 6: Save output ───────────────────────────────────────
        if self.config.write_output:
            self._save_outputs(result, raw_text)

        return result

    def document_id_for(self, name: str) -> str:
        """Filesystem-safe id used to name output files."""
        return self.config.document_id or make_document_id(name)

    def _save_outputs(self, result: ParseResult, raw_text: str):
        doc_id = self.document_id_for(result.document.name)
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        self._save_json(result.model_dump(), output_dir / f"{doc_id}_parsed.json")
        self._save_json(result.questions_dump(), output_dir / f"{doc_id}_questions.json")
        self._save_json(
            result.validation.model_dump(), output_dir / f"{doc_id}_validation.json"
        )

        if self.config.save_raw_text:
            raw_file = output_dir / f"{doc_id}_raw_text.txt"
            try:
                raw_file.write_text(raw_text, encoding="utf-8")
                logger.info(f"Saved raw text snapshot: {raw_file}")
            except OSError as e:
                logger.error(f"Failed to save raw text: {e}")

        logger.info(f"Output saved to: {output_dir}")

    def _build_metadata(self, path: str) -> DocumentMetadata:
        """Build document metadata from file info and config."""
        return DocumentMetadata(
            name=self.config.document_name or Path(path).stem,
            source_file=os.path.basename(path),
            file_hash=self._compute_file_hash(path),
            file_size_bytes=os.path.getsize(path),
        )

    def _compute_file_hash(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _save_json(self, data, filepath: Path):
        """Save JSON-serializable data to a file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON: {filepath}")
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save JSON: {e}")
