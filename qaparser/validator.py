"""
Validation Engine
=================
Post-parse validation and reporting.

After parsing each document, generates a report:
    - Total Questions Detected
    - Answered Successfully
    - Missing Question Ids (gaps in sequence)
    - Duplicate Question Ids
    - Questions Missing Answer
    - Synthesized (recovered) Question Ids
    - Skipped Lines

The parser itself never fails on bad input, so this report is where
degraded recovery becomes visible.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from .models import QuestionRecord, ValidationReport
from .state_machine import ParseState

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates parsed questions and produces a report.
    """

    def validate(
        self,
        questions: list[QuestionRecord],
        state: Optional[ParseState] = None,
    ) -> ValidationReport:
        """
        Run full validation on parsed questions.

        Args:
            questions: List of parsed questions to validate.
            state: Final state machine accumulator, for recovery statistics.

        Returns:
            ValidationReport with all detected issues.
        """
        report = ValidationReport()

        if state is not None:
            report.synthesized_question_ids = list(state.synthesized_ids)
            report.skipped_lines = state.skipped_lines

        if not questions:
            logger.warning("No questions to validate")
            return report

        report.total_questions_detected = len(questions)

        question_ids = [q.id for q in questions]
        id_counts = Counter(question_ids)

        report.duplicate_question_ids = sorted(
            qid for qid, count in id_counts.items() if count > 1
        )

        expected = set(range(min(question_ids), max(question_ids) + 1))
        report.missing_question_ids = sorted(expected - set(question_ids))

        report.questions_missing_answer = [
            q.id for q in questions if not q.has_answer
        ]
        report.answered_successfully = (
            len(questions) - len(report.questions_missing_answer)
        )

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(
            f"Total Questions Detected: {report.total_questions_detected}"
        )
        logger.info(
            f"Answered Successfully: {report.answered_successfully} "
            f"({report.success_rate}%)"
        )
        logger.info(
            f"Missing Question Ids: {len(report.missing_question_ids)}"
        )
        logger.info(
            f"Duplicate Question Ids: {len(report.duplicate_question_ids)}"
        )
        logger.info(
            f"Questions Missing Answer: "
            f"{len(report.questions_missing_answer)}"
        )
        logger.info(
            f"Recovered Questions: {len(report.synthesized_question_ids)}"
        )
        logger.info(f"Skipped Lines: {report.skipped_lines}")
        logger.info("=" * 60)

        return report
