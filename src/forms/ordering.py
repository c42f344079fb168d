# src/forms/ordering.py
"""
Interleaving of sections and standalone questions into respondent "pages".

Authoring, preview and respondent views all render from ``build_pages`` so that
grouping and question numbering are identical everywhere.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from src.app.logging import get_logger
from src.db.models import Question, Section

logger = get_logger(__name__)

PageKind = Literal["standalone", "section"]


@dataclass(frozen=True)
class Page:
    kind: PageKind
    questions: Tuple[Question, ...]
    section: Optional[Section] = None

    @property
    def question(self) -> Optional[Question]:
        # The single question of a standalone page.
        return self.questions[0] if self.kind == "standalone" else None


def find_orphans(questions: Sequence[Question], sections: Sequence[Section]) -> List[Question]:
    # Questions whose section_id points at a section that does not exist.
    known = {s.id for s in sections}
    return [q for q in questions if q.section_id and q.section_id not in known]


def build_pages(
    questions: Sequence[Question],
    sections: Sequence[Section],
    orphan_policy: str = "exclude",
) -> List[Page]:
    """
    Pure and deterministic.

    Sections (by ``order``) and standalone questions (by ``order``, or their index in
    ``questions`` when unset) are stable-sorted together; each section page carries its
    member questions in source-list order.

    Orphaned questions are logged and either excluded (``exclude``) or appended as
    standalone pages after everything else (``append``).
    """
    known = {s.id: s for s in sections}

    members: Dict[str, List[Question]] = {s.id: [] for s in sections}
    entries: List[Tuple[float, int, object]] = []
    seq = 0

    for s in sections:
        entries.append((s.order, seq, s))
        seq += 1

    orphans: List[Question] = []
    for index, q in enumerate(questions):
        if q.section_id:
            if q.section_id in known:
                members[q.section_id].append(q)
            else:
                orphans.append(q)
            continue
        order = q.order if q.order is not None else index
        entries.append((order, seq, q))
        seq += 1

    entries.sort(key=lambda e: (e[0], e[1]))

    pages: List[Page] = []
    for _, _, ref in entries:
        if isinstance(ref, Section):
            pages.append(Page(kind="section", section=ref, questions=tuple(members[ref.id])))
        else:
            pages.append(Page(kind="standalone", questions=(ref,)))

    if orphans:
        logger.warning(
            "questions reference missing sections",
            extra={
                "orphans": [q.id for q in orphans],
                "missing_sections": sorted({q.section_id for q in orphans if q.section_id}),
                "policy": orphan_policy,
            },
        )
        if orphan_policy == "append":
            pages.extend(Page(kind="standalone", questions=(q,)) for q in orphans)

    return pages


def flatten(pages: Sequence[Page]) -> List[Question]:
    out: List[Question] = []
    for p in pages:
        out.extend(p.questions)
    return out


def number_questions(pages: Sequence[Page]) -> Dict[str, int]:
    # question id -> 1-based display number
    return {q.id: i for i, q in enumerate(flatten(pages), start=1)}
