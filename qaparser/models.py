"""
Data Models
===========
Pydantic models for structured question/answer parsing output.
All models are serializable to JSON as-is.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, computed_field


# ─── Question Model ──────────────────────────────────────────────────────────


class QuestionRecord(BaseModel):
    """
    A single question/answer pair recovered from the text.

    ``id`` is the number printed in the document, or the previous record's
    id plus one when the number was lost. ``options`` is reserved for
    multiple-choice documents and is never filled by the text parser.
    """
    id: int
    question: str
    answer: str = ""
    options: list[str] = Field(default_factory=list)

    @property
    def has_answer(self) -> bool:
        return bool(self.answer.strip())


# ─── Document / Parse Result Models ──────────────────────────────────────────


class DocumentMetadata(BaseModel):
    """Metadata about the source document."""
    name: str = ""
    source_file: str = ""
    total_pages: int = 0
    file_hash: str = ""
    file_size_bytes: int = 0


class ParseVersion(BaseModel):
    """Version tracking for a parse run."""
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    raw_line_count: int = 0
    filtered_line_count: int = 0
    structured_question_count: int = 0


class ValidationReport(BaseModel):
    """Post-parse validation report."""
    total_questions_detected: int = 0
    answered_successfully: int = 0
    missing_question_ids: list[int] = Field(default_factory=list)
    duplicate_question_ids: list[int] = Field(default_factory=list)
    questions_missing_answer: list[int] = Field(default_factory=list)
    synthesized_question_ids: list[int] = Field(default_factory=list)
    skipped_lines: int = 0

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_questions_detected == 0:
            return 0.0
        return round(
            self.answered_successfully / self.total_questions_detected * 100,
            2
        )


class ParseResult(BaseModel):
    """
    Complete output of a parse run.
    ``questions`` alone is the record array handed to consumers;
    the rest describes where it came from and how clean it is.
    """
    document: DocumentMetadata
    parse_version: ParseVersion
    questions: list[QuestionRecord] = Field(default_factory=list)
    validation: ValidationReport = Field(
        default_factory=ValidationReport
    )

    def questions_dump(self) -> list[dict]:
        """Bare ``[{id, question, answer, options}]`` array."""
        return [q.model_dump() for q in self.questions]
