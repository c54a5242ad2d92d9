"""
State Machine Parser
====================
Deterministic state machine that groups noise-free OCR lines into
question/answer records.

Numbered lines are the only reliable anchors: a new number opens a question,
a repeat of the current number carries its answer. Unnumbered lines are
attributed by phase, and when a number has clearly been lost the machine
assumes strict question/answer alternation and synthesizes the next id.

The machine is a fold over the line sequence: every step takes an immutable
``ParseState`` and returns a new one, so no state survives between calls.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from functools import reduce
from typing import Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

from .models import QuestionRecord

logger = logging.getLogger(__name__)

# ─── Line Tokenizer ───────────────────────────────────────────────────────────

# Leading number, any mix of ". - ) whitespace" (possibly none), then content.
# "58Domanda" must match: OCR often fuses the number with the text.
NUMBERED_LINE_PATTERN = re.compile(r"^([0-9]+)([.\-)\s]*)(.*)")


class NumberedLine(BaseModel):
    """A line that starts with a question number."""
    model_config = ConfigDict(frozen=True)

    id: int
    separator: str
    content: str


class PlainLine(BaseModel):
    """A line without a leading number."""
    model_config = ConfigDict(frozen=True)

    text: str


Token = Union[NumberedLine, PlainLine]


def classify(line: str) -> Token:
    """Split a line into its leading number and content, if it has one."""
    match = NUMBERED_LINE_PATTERN.match(line)
    if not match:
        return PlainLine(text=line)
    return NumberedLine(
        id=int(match.group(1)),
        separator=match.group(2),
        content=match.group(3).strip(),
    )


# ─── Parser State ─────────────────────────────────────────────────────────────


class Phase(str, Enum):
    """What the last attributed line was."""
    NONE = "NONE"
    Q_EXPLICIT = "Q_EXPLICIT"
    A_EXPLICIT = "A_EXPLICIT"
    Q_IMPLICIT = "Q_IMPLICIT"
    A_IMPLICIT = "A_IMPLICIT"


class ParseState(BaseModel):
    """
    Accumulator threaded through the fold.

    ``open_record`` is the only record still being built; everything in
    ``emitted`` is final.
    """
    model_config = ConfigDict(frozen=True)

    phase: Phase = Phase.NONE
    open_record: Optional[QuestionRecord] = None
    emitted: tuple[QuestionRecord, ...] = ()
    synthesized_ids: tuple[int, ...] = ()
    skipped_lines: int = 0

    @property
    def questions(self) -> list[QuestionRecord]:
        return list(self.emitted)


def _emit(state: ParseState) -> tuple[QuestionRecord, ...]:
    """Emitted records plus the open one, unless its question is empty."""
    record = state.open_record
    if record is None or not record.question:
        return state.emitted
    return state.emitted + (record,)


def _open_implicit(state: ParseState, line: str) -> ParseState:
    new_id = state.open_record.id + 1
    logger.info(f"Recovered unnumbered question, assigned id {new_id}")
    return state.model_copy(update={
        "phase": Phase.Q_IMPLICIT,
        "open_record": QuestionRecord(id=new_id, question=line),
        "emitted": _emit(state),
        "synthesized_ids": state.synthesized_ids + (new_id,),
    })


# ─── Follow-up Policies ───────────────────────────────────────────────────────

# Decides what an unnumbered line means right after an answer.
FollowUpPolicy = Callable[[ParseState, str], ParseState]


def promote_to_implicit_question(state: ParseState, line: str) -> ParseState:
    """
    Treat the line as a new question whose number was lost.

    Source documents alternate strictly between question and answer, so an
    unnumbered line after an answer is read as the next question. A genuine
    multi-line answer is indistinguishable from this case and gets split.
    """
    return _open_implicit(state, line)


def extend_answer(state: ParseState, line: str) -> ParseState:
    """Treat the line as a continuation of the current answer."""
    record = state.open_record
    return state.model_copy(update={
        "open_record": record.model_copy(
            update={"answer": f"{record.answer} {line}"}
        ),
    })


FOLLOW_UP_POLICIES: dict[str, FollowUpPolicy] = {
    "promote": promote_to_implicit_question,
    "extend": extend_answer,
}


# ─── Transitions ──────────────────────────────────────────────────────────────


def _on_numbered(state: ParseState, token: NumberedLine) -> ParseState:
    if not token.content:
        return state.model_copy(update={"skipped_lines": state.skipped_lines + 1})

    record = state.open_record

    # Same number again: this is the answer
    if record is not None and record.id == token.id:
        if state.phase == Phase.A_EXPLICIT:
            answer = f"{record.answer} {token.content}"
        else:
            answer = token.content
        return state.model_copy(update={
            "phase": Phase.A_EXPLICIT,
            "open_record": record.model_copy(update={"answer": answer}),
        })

    logger.debug(f"Detected question {token.id}")
    return state.model_copy(update={
        "phase": Phase.Q_EXPLICIT,
        "open_record": QuestionRecord(id=token.id, question=token.content),
        "emitted": _emit(state),
    })


def _on_plain(
    state: ParseState, line: str, policy: FollowUpPolicy
) -> ParseState:
    record = state.open_record

    if record is None:
        return state.model_copy(update={"skipped_lines": state.skipped_lines + 1})

    if state.phase == Phase.Q_EXPLICIT:
        return state.model_copy(update={
            "open_record": record.model_copy(
                update={"question": f"{record.question} {line}"}
            ),
        })

    if state.phase == Phase.Q_IMPLICIT:
        return state.model_copy(update={
            "phase": Phase.A_IMPLICIT,
            "open_record": record.model_copy(update={"answer": line}),
        })

    # A_EXPLICIT / A_IMPLICIT
    return policy(state, line)


def step(
    state: ParseState,
    line: str,
    policy: FollowUpPolicy = promote_to_implicit_question,
) -> ParseState:
    """Attribute one noise-free line and return the next state."""
    token = classify(line)
    if isinstance(token, NumberedLine):
        return _on_numbered(state, token)
    return _on_plain(state, token.text, policy)


def finish(state: ParseState) -> ParseState:
    """Close the open record at end of input."""
    return state.model_copy(update={
        "open_record": None,
        "emitted": _emit(state),
    })


def run(
    lines: Iterable[str],
    policy: FollowUpPolicy = promote_to_implicit_question,
) -> ParseState:
    """Fold ``lines`` into a final, closed ``ParseState``."""
    state = reduce(lambda s, line: step(s, line, policy), lines, ParseState())
    return finish(state)


def parse(
    lines: Iterable[str],
    policy: FollowUpPolicy = promote_to_implicit_question,
) -> list[QuestionRecord]:
    """Group noise-free lines into question records."""
    return run(lines, policy).questions


# ─── Parser Facade ────────────────────────────────────────────────────────────


class StateMachineParser:
    """
    Holds the follow-up policy and nothing else; each call starts from a
    fresh ``ParseState``, so one instance can be reused freely.
    """

    def __init__(self, policy: FollowUpPolicy = promote_to_implicit_question):
        self.policy = policy

    @classmethod
    def from_policy_name(cls, name: str) -> "StateMachineParser":
        try:
            return cls(FOLLOW_UP_POLICIES[name])
        except KeyError:
            raise ValueError(
                f"Unknown follow-up policy {name!r}, "
                f"expected one of {sorted(FOLLOW_UP_POLICIES)}"
            ) from None

    def run(self, lines: Iterable[str]) -> ParseState:
        state = run(lines, self.policy)
        logger.info(
            f"State machine emitted {len(state.emitted)} questions "
            f"({len(state.synthesized_ids)} recovered, "
            f"{state.skipped_lines} lines skipped)"
        )
        return state

    def parse(self, lines: Iterable[str]) -> list[QuestionRecord]:
        """Parse lines into structured questions."""
        return self.run(lines).questions
