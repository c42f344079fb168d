# repository.py
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set
from uuid import uuid4

from src.app.errors import (
    EligibilityIssue,
    FieldError,
    NotFoundError,
    SubmissionIneligibleError,
    TransientNetworkError,
    ValidationError,
)
from src.app.logging import get_logger
from src.db.codec import clean_questions, load_questions, load_sections
from src.db.connection import db_session
from src.db.models import (
    AudienceSpec,
    Category,
    Deployment,
    DirectoryUser,
    Form,
    Response,
    Schedule,
    parse_iso,
    to_iso,
    utc_now,
)
from src.db.schema import SCHEMA_SQL

logger = get_logger(__name__)

_FORM_FIELDS = {"title", "description", "category", "target_audience", "image_ref", "status", "schedule"}


def new_form_id() -> str:
    return str(uuid4())


def new_question_id() -> str:
    return f"q_{uuid4().hex[:12]}"


def new_section_id() -> str:
    return f"section_{uuid4().hex[:12]}"


class SQLiteRepository:
    """
    SQLite-backed storage for forms, the user directory, deployments and responses.

    Locked-database / timeout failures surface as TransientNetworkError so callers
    can retry without losing in-memory state.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            with db_session(self.db_path, timeout=self.timeout) as conn:
                yield conn
        except sqlite3.OperationalError as e:
            logger.warning("storage operation failed", extra={"error": str(e)})
            raise TransientNetworkError(f"Storage unavailable: {e}") from e

    def init_schema(self, schema_sql: str = SCHEMA_SQL) -> None:
        with self._session() as conn:
            conn.executescript(schema_sql)

    # -------------------------
    # Forms
    # -------------------------
    def create_form(self, form: Form) -> str:
        form_id = form.id or new_form_id()
        now = utc_now()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO forms(form_id, title, description, category, target_audience, image_ref,
                                  status, start_at, end_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    form_id,
                    form.title,
                    form.description,
                    form.category,
                    json.dumps(form.target_audience.to_dict()) if form.target_audience else None,
                    form.image_ref,
                    form.status,
                    to_iso(form.schedule.start) if form.schedule else None,
                    to_iso(form.schedule.end) if form.schedule else None,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            self._write_children(conn, form_id, form)
        logger.info("form created", extra={"form": form_id, "questions": len(form.questions)})
        return form_id

    def save_form(self, form: Form) -> str:
        # Upsert: full replace of header fields and children.
        if form.id is None or not self.form_exists(form.id):
            return self.create_form(form)
        self.update_form(
            form.id,
            title=form.title,
            description=form.description,
            category=form.category,
            target_audience=form.target_audience,
            image_ref=form.image_ref,
            status=form.status,
            schedule=form.schedule,
            sections=form.sections,
            questions=form.questions,
        )
        return form.id

    def update_form(self, form_id: str, **fields: Any) -> None:
        # Update any subset of header fields; sections/questions replace children when given.
        set_parts: List[str] = []
        params: List[Any] = []

        for k, v in fields.items():
            if k not in _FORM_FIELDS:
                continue
            if k == "target_audience":
                set_parts.append("target_audience = ?")
                params.append(json.dumps(v.to_dict()) if v is not None else None)
            elif k == "schedule":
                set_parts.extend(["start_at = ?", "end_at = ?"])
                params.extend([to_iso(v.start) if v else None, to_iso(v.end) if v else None])
            else:
                set_parts.append(f"{k} = ?")
                params.append(v)

        set_parts.append("updated_at = ?")
        params.append(to_iso(utc_now()))
        params.append(form_id)

        with self._session() as conn:
            cur = conn.execute(f"UPDATE forms SET {', '.join(set_parts)} WHERE form_id = ?", params)
            if cur.rowcount == 0:
                raise NotFoundError(f"Form not found: {form_id}")
            if "sections" in fields or "questions" in fields:
                current = self._read_form(conn, form_id)
                merged = replace(
                    current,
                    sections=tuple(fields.get("sections", current.sections)),
                    questions=tuple(fields.get("questions", current.questions)),
                )
                self._write_children(conn, form_id, merged)

    def form_exists(self, form_id: str) -> bool:
        with self._session() as conn:
            row = conn.execute("SELECT 1 FROM forms WHERE form_id = ?", (form_id,)).fetchone()
            return row is not None

    def get_form(self, form_id: str) -> Form:
        with self._session() as conn:
            return self._read_form(conn, form_id)

    def list_forms(self, status: Optional[str] = None) -> List[Form]:
        with self._session() as conn:
            if status:
                rows = conn.execute(
                    "SELECT form_id FROM forms WHERE status = ? ORDER BY created_at DESC", (status,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT form_id FROM forms ORDER BY created_at DESC").fetchall()
            return [self._read_form(conn, r["form_id"]) for r in rows]

    def delete_form(self, form_id: str) -> None:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM forms WHERE form_id = ?", (form_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"Form not found: {form_id}")
        logger.info("form deleted", extra={"form": form_id})

    def count_questions(self, form_id: str) -> int:
        with self._session() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM questions WHERE form_id = ?", (form_id,)).fetchone()
            return int(row["n"])

    def duplicate_form(self, form_id: str) -> str:
        original = self.get_form(form_id)
        copy = _with_fresh_ids(original)
        return self.create_form(
            replace(copy, id=None, title=f"{original.title} (Copy)", status="draft")
        )

    def save_as_template(self, form_id: str) -> str:
        original = self.get_form(form_id)
        copy = _with_fresh_ids(original)
        return self.create_form(
            replace(copy, id=None, status="template", schedule=None,
                    questions=tuple(clean_questions(copy.questions)))
        )

    def _write_children(self, conn: sqlite3.Connection, form_id: str, form: Form) -> None:
        conn.execute("DELETE FROM question_options WHERE form_id = ?", (form_id,))
        conn.execute("DELETE FROM questions WHERE form_id = ?", (form_id,))
        conn.execute("DELETE FROM sections WHERE form_id = ?", (form_id,))

        for s in form.sections:
            conn.execute(
                "INSERT INTO sections(section_id, form_id, title, description, order_index) VALUES (?, ?, ?, ?, ?)",
                (s.id, form_id, s.title, s.description, s.order),
            )

        for position, q in enumerate(form.questions):
            conn.execute(
                """
                INSERT INTO questions(question_id, form_id, section_id, question_type, question_text,
                                      description, required, order_index, position, min_value, max_value)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    q.id, form_id, q.section_id, q.type, q.prompt, q.description,
                    1 if q.required else 0,
                    q.order if q.is_standalone else None,
                    position, q.min, q.max,
                ),
            )
            if q.is_choice:
                conn.executemany(
                    "INSERT INTO question_options(form_id, question_id, option_text, order_index) VALUES (?, ?, ?, ?)",
                    [(form_id, q.id, o, i) for i, o in enumerate(q.options or ())],
                )

    def _read_form(self, conn: sqlite3.Connection, form_id: str) -> Form:
        row = conn.execute("SELECT * FROM forms WHERE form_id = ?", (form_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Form not found: {form_id}")

        section_rows = conn.execute(
            "SELECT section_id, title, description, order_index FROM sections WHERE form_id = ?",
            (form_id,),
        ).fetchall()
        question_rows = conn.execute(
            "SELECT * FROM questions WHERE form_id = ? ORDER BY position ASC", (form_id,)
        ).fetchall()
        option_rows = conn.execute(
            "SELECT question_id, option_text FROM question_options WHERE form_id = ? ORDER BY order_index ASC",
            (form_id,),
        ).fetchall()

        options_by_qid: Dict[str, List[Dict[str, Any]]] = {}
        for o in option_rows:
            options_by_qid.setdefault(o["question_id"], []).append({"option_text": o["option_text"]})

        # Rows go through the same codec as API payloads.
        questions = load_questions(
            [
                {
                    "id": q["question_id"],
                    "question_type": q["question_type"],
                    "question_text": q["question_text"],
                    "description": q["description"],
                    "required": bool(q["required"]),
                    "options": options_by_qid.get(q["question_id"], []),
                    "min_value": q["min_value"],
                    "max_value": q["max_value"],
                    "section_id": q["section_id"],
                    "order_index": q["order_index"],
                }
                for q in question_rows
            ],
            validate=False,
        )
        sections = load_sections(
            [
                {"id": s["section_id"], "title": s["title"], "description": s["description"],
                 "order_index": s["order_index"]}
                for s in section_rows
            ],
            validate=False,
        )

        schedule = None
        start, end = parse_iso(row["start_at"]), parse_iso(row["end_at"])
        if start is not None and end is not None:
            schedule = Schedule(start=start, end=end)

        return Form(
            id=row["form_id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            target_audience=AudienceSpec.from_dict(json.loads(row["target_audience"])) if row["target_audience"] else None,
            image_ref=row["image_ref"],
            status=row["status"],
            schedule=schedule,
            sections=tuple(sections),
            questions=tuple(questions),
            created_at=parse_iso(row["created_at"]),
            updated_at=parse_iso(row["updated_at"]),
        )

    # -------------------------
    # Category registry
    # -------------------------
    def list_categories(self) -> List[Category]:
        with self._session() as conn:
            rows = conn.execute("SELECT id, name FROM categories ORDER BY name ASC").fetchall()
            return [Category(id=int(r["id"]), name=r["name"]) for r in rows]

    def add_category(self, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError([FieldError("name", "Category name is required")])
        try:
            with self._session() as conn:
                cur = conn.execute("INSERT INTO categories(name) VALUES (?)", (name,))
                return Category(id=int(cur.lastrowid), name=name)
        except sqlite3.IntegrityError as e:
            raise ValidationError([FieldError("name", "Category already exists")]) from e

    def remove_category(self, category_id: int) -> None:
        with self._session() as conn:
            cur = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"Category not found: {category_id}")

    # -------------------------
    # Directory
    # -------------------------
    def upsert_user(self, user: DirectoryUser) -> None:
        self.upsert_users([user])

    def upsert_users(self, users: Iterable[DirectoryUser]) -> int:
        rows = [
            (u.id, u.full_name, u.email, u.role, u.department, u.course_year_section, u.company, u.status)
            for u in users
        ]
        with self._session() as conn:
            conn.executemany(
                """
                INSERT INTO users(id, full_name, email, role, department, course_year_section, company, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  full_name=excluded.full_name,
                  email=excluded.email,
                  role=excluded.role,
                  department=excluded.department,
                  course_year_section=excluded.course_year_section,
                  company=excluded.company,
                  status=excluded.status
                """,
                rows,
            )
        return len(rows)

    def lookup_users(
        self,
        role: str,
        department: Optional[str] = None,
        course_year_section: Optional[str] = None,
        company: Optional[str] = None,
    ) -> List[DirectoryUser]:
        where = ["status = 'active'"]
        params: List[Any] = []
        if role != "*":
            where.append("role = ?")
            params.append(role)
        if department:
            where.append("department = ?")
            params.append(department)
        if course_year_section:
            where.append("course_year_section = ?")
            params.append(course_year_section)
        if company:
            where.append("company = ?")
            params.append(company)

        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM users WHERE {' AND '.join(where)} ORDER BY full_name ASC, id ASC",
                params,
            ).fetchall()
            return [_row_to_user(r) for r in rows]

    def get_user(self, user_id: int) -> Optional[DirectoryUser]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return _row_to_user(row) if row else None

    # -------------------------
    # Deployments + assignments
    # -------------------------
    def upsert_deployment(self, deployment: Deployment) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO deployments(form_id, start_at, end_at, target_filters, deployment_status, deployed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(form_id) DO UPDATE SET
                  start_at=excluded.start_at,
                  end_at=excluded.end_at,
                  target_filters=excluded.target_filters,
                  deployment_status=excluded.deployment_status,
                  deployed_at=excluded.deployed_at
                """,
                (
                    deployment.form_id,
                    to_iso(deployment.schedule.start),
                    to_iso(deployment.schedule.end),
                    json.dumps(deployment.audience.to_dict()) if deployment.audience else None,
                    deployment.status,
                    to_iso(deployment.deployed_at or utc_now()),
                ),
            )

    def get_deployment(self, form_id: str) -> Optional[Deployment]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM deployments WHERE form_id = ?", (form_id,)).fetchone()
            if row is None:
                return None
            return Deployment(
                form_id=row["form_id"],
                schedule=Schedule(start=parse_iso(row["start_at"]), end=parse_iso(row["end_at"])),
                audience=AudienceSpec.from_dict(json.loads(row["target_filters"])) if row["target_filters"] else None,
                status=row["deployment_status"],
                deployed_at=parse_iso(row["deployed_at"]),
            )

    def replace_assignments(self, form_id: str, user_ids: Iterable[int]) -> int:
        ids = sorted(set(int(u) for u in user_ids))
        now = to_iso(utc_now())
        with self._session() as conn:
            conn.execute("DELETE FROM assignments WHERE form_id = ?", (form_id,))
            conn.executemany(
                "INSERT INTO assignments(form_id, user_id, assigned_at) VALUES (?, ?, ?)",
                [(form_id, uid, now) for uid in ids],
            )
        return len(ids)

    def add_assignments(self, form_id: str, user_ids: Iterable[int]) -> int:
        # Returns the number of new (form, user) pairs; existing pairs are left alone.
        ids = sorted(set(int(u) for u in user_ids))
        now = to_iso(utc_now())
        with self._session() as conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR IGNORE INTO assignments(form_id, user_id, assigned_at) VALUES (?, ?, ?)",
                [(form_id, uid, now) for uid in ids],
            )
            return conn.total_changes - before

    def list_assigned_user_ids(self, form_id: str) -> Set[int]:
        with self._session() as conn:
            rows = conn.execute("SELECT user_id FROM assignments WHERE form_id = ?", (form_id,)).fetchall()
            return {int(r["user_id"]) for r in rows}

    def is_assigned(self, form_id: str, user_id: int) -> bool:
        with self._session() as conn:
            row = conn.execute(
                "SELECT 1 FROM assignments WHERE form_id = ? AND user_id = ?", (form_id, user_id)
            ).fetchone()
            return row is not None

    def list_assignments_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT f.form_id, f.title, f.status, f.end_at, r.submitted_at
                FROM assignments a
                JOIN forms f ON f.form_id = a.form_id
                LEFT JOIN responses r ON r.form_id = a.form_id AND r.respondent_id = a.user_id
                WHERE a.user_id = ?
                ORDER BY f.end_at ASC
                """,
                (user_id,),
            ).fetchall()
            return [
                {
                    "form_id": r["form_id"],
                    "title": r["title"],
                    "form_status": r["status"],
                    "end_at": parse_iso(r["end_at"]),
                    "submitted_at": parse_iso(r["submitted_at"]),
                }
                for r in rows
            ]

    # -------------------------
    # Responses
    # -------------------------
    def submit_response(self, form_id: str, respondent_id: int, answers: Dict[str, Any]) -> Response:
        # UNIQUE(form_id, respondent_id) is the authoritative duplicate guard.
        response_id = str(uuid4())
        submitted_at = utc_now()
        try:
            with self._session() as conn:
                conn.execute(
                    """
                    INSERT INTO responses(response_id, form_id, respondent_id, answers, submitted_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (response_id, form_id, respondent_id, json.dumps(answers, ensure_ascii=False), to_iso(submitted_at)),
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                issue = EligibilityIssue("already_submitted", "You have already submitted this form")
            elif "FOREIGN KEY" in str(e):
                issue = EligibilityIssue("not_found", "This form no longer exists")
            else:
                raise
            logger.info("response rejected", extra={"form": form_id, "reason": issue.type})
            raise SubmissionIneligibleError([issue]) from e

        logger.info("response stored", extra={"form": form_id, "respondent": respondent_id})
        return Response(
            id=response_id,
            form_id=form_id,
            respondent_id=respondent_id,
            answers=dict(answers),
            submitted_at=submitted_at,
        )

    def has_response(self, form_id: str, respondent_id: int) -> bool:
        with self._session() as conn:
            row = conn.execute(
                "SELECT 1 FROM responses WHERE form_id = ? AND respondent_id = ?", (form_id, respondent_id)
            ).fetchone()
            return row is not None

    def list_responses_for_form(self, form_id: str) -> List[Response]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT r.*, u.full_name, u.email, u.role
                FROM responses r
                LEFT JOIN users u ON u.id = r.respondent_id
                WHERE r.form_id = ?
                ORDER BY r.submitted_at ASC, r.rowid ASC
                """,
                (form_id,),
            ).fetchall()
            return [
                Response(
                    id=r["response_id"],
                    form_id=r["form_id"],
                    respondent_id=int(r["respondent_id"]),
                    answers=json.loads(r["answers"]) if r["answers"] else {},
                    submitted_at=parse_iso(r["submitted_at"]),
                    respondent_name=r["full_name"],
                    respondent_email=r["email"],
                    respondent_role=r["role"],
                )
                for r in rows
            ]

    def list_responses_for_respondent(self, respondent_id: int) -> List[Dict[str, Any]]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT form_id, submitted_at FROM responses WHERE respondent_id = ? ORDER BY submitted_at DESC",
                (respondent_id,),
            ).fetchall()
            return [{"form_id": r["form_id"], "submitted_at": parse_iso(r["submitted_at"])} for r in rows]


def _row_to_user(r: sqlite3.Row) -> DirectoryUser:
    return DirectoryUser(
        id=int(r["id"]),
        full_name=r["full_name"],
        role=r["role"],
        email=r["email"],
        department=r["department"],
        course_year_section=r["course_year_section"],
        company=r["company"],
        status=r["status"],
    )


def _with_fresh_ids(form: Form) -> Form:
    # New ids for sections and questions; section references follow.
    section_map = {s.id: new_section_id() for s in form.sections}
    sections = tuple(replace(s, id=section_map[s.id]) for s in form.sections)
    questions = tuple(
        replace(
            q,
            id=new_question_id(),
            section_id=section_map.get(q.section_id, q.section_id) if q.section_id else None,
        )
        for q in form.questions
    )
    return replace(form, sections=sections, questions=questions)
