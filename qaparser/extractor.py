"""
Page Extractor
==============
Extracts per-page plain text from PDF files using PyMuPDF (fitz).
Text spans are kept in content-stream order, one output line per PDF line,
so the question/answer layout of the source survives as line breaks.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    """The document could not be opened or read as a PDF."""


def join_pages(pages: list[str]) -> str:
    """Concatenate page texts into the single string the parser consumes."""
    return "".join(page + "\n" for page in pages)


class PageExtractor:
    """
    Handles PDF ingestion and page-level text extraction.
    """

    def _open(self, pdf_path: str) -> fitz.Document:
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")
        try:
            return fitz.open(pdf_path)
        except Exception as e:
            raise ExtractionError(f"Cannot open PDF {pdf_path}: {e}") from e

    def get_page_count(self, pdf_path: str) -> int:
        """Get total number of pages in the PDF."""
        with self._open(pdf_path) as doc:
            return doc.page_count

    def extract_pages(
        self,
        pdf_path: str,
        page_range: Optional[tuple[int, int]] = None,
        progress_callback: Optional[callable] = None,
    ) -> list[str]:
        """
        Extract the text of every page in the PDF.

        Args:
            pdf_path: Path to the PDF file.
            page_range: Optional (start, end) range (1-indexed, inclusive).
            progress_callback: Optional callable(current, total).

        Returns:
            One newline-joined string per page, in page order.

        Raises:
            FileNotFoundError: If the PDF doesn't exist.
            ExtractionError: If the PDF cannot be opened or a page cannot be read.
        """
        pages: list[str] = []

        with self._open(pdf_path) as doc:
            if doc.needs_pass:
                raise ExtractionError(f"PDF is encrypted: {pdf_path}")
            if doc.page_count == 0:
                raise ExtractionError(f"PDF has no pages: {pdf_path}")

            total_pages = doc.page_count

            # Determine page range (1-indexed)
            start_page = 1
            end_page = total_pages
            if page_range:
                start_page = max(1, page_range[0])
                end_page = min(total_pages, page_range[1])

            if start_page > end_page:
                raise ExtractionError(
                    f"Page range {page_range[0]}-{page_range[1]} selects no pages "
                    f"of {pdf_path} ({total_pages} pages)"
                )

            logger.info(
                f"Extracting text from {pdf_path} "
                f"(pages {start_page} to {end_page})"
            )

            for page_idx in range(start_page - 1, end_page):
                page_num = page_idx + 1
                try:
                    page_dict = doc[page_idx].get_text(
                        "dict", flags=fitz.TEXT_PRESERVE_WHITESPACE
                    )
                except Exception as e:
                    raise ExtractionError(
                        f"Failed reading page {page_num} of {pdf_path}: {e}"
                    ) from e

                pages.append(self._page_text(page_dict))

                if progress_callback:
                    progress_callback(page_num - start_page + 1, end_page - start_page + 1)

        logger.info(f"Extracted {len(pages)} pages")
        return pages

    def _page_text(self, page_dict: dict) -> str:
        """Combine spans into lines and lines into one page string."""
        lines = []
        for block in page_dict.get("blocks", []):
            if block["type"] != 0:  # Text only
                continue
            for line in block.get("lines", []):
                lines.append("".join(span["text"] for span in line.get("spans", [])))
        return "\n".join(lines)
