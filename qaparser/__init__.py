"""
OCR Question/Answer Parser
==========================
Turns noisy OCR text extracted from exam-preparation PDFs ("panieri") into
an ordered list of question/answer records.

Architecture:
    - Page Extractor: Extracts per-page text from PDF files
    - Normalizer: Repairs mis-decoded glyphs and drops header/footer noise
    - State Machine: Groups lines into questions and answers, recovering lost numbering
    - Validator: Reports gaps, duplicates, and unanswered questions
    - Output Formatter: Produces a JSON array of {id, question, answer, options}

Version: 1.0.0
"""

__version__ = "1.0.0"
