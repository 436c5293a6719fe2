"""
SQLite persistence for work items, developer stories, dependency edges and
execution logs.

Writes are staged on the connection and become durable only on commit().
Callers group related writes with unit_of_work() so that a failure part way
through rolls everything back.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from devstory.pm.models import (
    DeveloperStory,
    DeveloperStoryDependency,
    ExecutionEventType,
    ExecutionLog,
    StoryStatus,
    StoryType,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS work_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,
  title TEXT NOT NULL,
  description TEXT NOT NULL,
  acceptance_criteria TEXT,
  priority INTEGER NOT NULL DEFAULT 5 CHECK (priority BETWEEN 1 AND 9),
  status TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  error_message TEXT
);

CREATE TABLE IF NOT EXISTS developer_stories (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  work_item_id INTEGER NOT NULL,
  story_type TEXT NOT NULL,
  title TEXT NOT NULL,
  description TEXT NOT NULL,
  instructions TEXT NOT NULL,
  priority INTEGER NOT NULL DEFAULT 5,
  status TEXT NOT NULL,
  git_branch TEXT,
  git_worktree TEXT,
  started_at TEXT,
  completed_at TEXT,
  error_message TEXT,
  metadata_json TEXT NOT NULL DEFAULT '{}',
  FOREIGN KEY(work_item_id) REFERENCES work_items(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS developer_story_dependencies (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  dependent_story_id INTEGER NOT NULL,
  required_story_id INTEGER NOT NULL,
  description TEXT,
  created_at TEXT NOT NULL,
  UNIQUE(dependent_story_id, required_story_id),
  CHECK (dependent_story_id != required_story_id),
  FOREIGN KEY(dependent_story_id) REFERENCES developer_stories(id) ON DELETE CASCADE,
  FOREIGN KEY(required_story_id) REFERENCES developer_stories(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS execution_logs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  developer_story_id INTEGER NOT NULL,
  event_type TEXT NOT NULL,
  timestamp TEXT NOT NULL,
  details TEXT,
  error_message TEXT,
  metadata_json TEXT,
  FOREIGN KEY(developer_story_id) REFERENCES developer_stories(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_stories_status ON developer_stories(status);
CREATE INDEX IF NOT EXISTS idx_stories_work_item ON developer_stories(work_item_id);
CREATE INDEX IF NOT EXISTS idx_deps_dependent ON developer_story_dependencies(dependent_story_id);
CREATE INDEX IF NOT EXISTS idx_deps_required ON developer_story_dependencies(required_story_id);
CREATE INDEX IF NOT EXISTS idx_logs_story ON execution_logs(developer_story_id);
"""


def connect_db(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open the project database, creating parent directories as needed."""
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


StatusFilter = Union[StoryStatus, Iterable[StoryStatus], None]


class Store:
    """Persistence gateway. One instance per process / connection."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self.conn = connect_db(db_path)
        ensure_schema(self.conn)

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    # --- Unit of work ---

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    @contextmanager
    def unit_of_work(self) -> Iterator["Store"]:
        """Commit everything written inside the block, or nothing."""
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            raise
        self.conn.commit()

    # --- Work items ---

    def add_work_item(self, item: WorkItem) -> WorkItem:
        cur = self.conn.execute(
            """
            INSERT INTO work_items
              (type, title, description, acceptance_criteria, priority,
               status, created_at, updated_at, error_message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.type.value,
                item.title,
                item.description,
                item.acceptance_criteria,
                item.priority,
                item.status.value,
                _ts(item.created_at),
                _ts(item.updated_at),
                item.error_message,
            ),
        )
        return replace(item, id=cur.lastrowid)

    def save_work_item(self, item: WorkItem) -> None:
        self.conn.execute(
            """
            UPDATE work_items
               SET type = ?, title = ?, description = ?, acceptance_criteria = ?,
                   priority = ?, status = ?, updated_at = ?, error_message = ?
             WHERE id = ?
            """,
            (
                item.type.value,
                item.title,
                item.description,
                item.acceptance_criteria,
                item.priority,
                item.status.value,
                _ts(item.updated_at),
                item.error_message,
                item.id,
            ),
        )

    def get_work_item(self, work_item_id: int) -> Optional[WorkItem]:
        row = self.conn.execute(
            "SELECT * FROM work_items WHERE id = ?", (work_item_id,)
        ).fetchone()
        return self._row_to_work_item(row) if row else None

    def list_work_items(self, status: Optional[WorkItemStatus] = None) -> list[WorkItem]:
        if status is None:
            rows = self.conn.execute("SELECT * FROM work_items ORDER BY id").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM work_items WHERE status = ? ORDER BY id", (status.value,)
            ).fetchall()
        return [self._row_to_work_item(r) for r in rows]

    def get_in_progress_work_items(self) -> list[WorkItem]:
        return self.list_work_items(WorkItemStatus.IN_PROGRESS)

    # --- Developer stories ---

    def add_story(self, story: DeveloperStory) -> DeveloperStory:
        cur = self.conn.execute(
            """
            INSERT INTO developer_stories
              (work_item_id, story_type, title, description, instructions,
               priority, status, git_branch, git_worktree, started_at,
               completed_at, error_message, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                story.work_item_id,
                story.story_type.value,
                story.title,
                story.description,
                story.instructions,
                story.priority,
                story.status.value,
                story.git_branch,
                story.git_worktree,
                _ts(story.started_at),
                _ts(story.completed_at),
                story.error_message,
                json.dumps(story.metadata or {}),
            ),
        )
        return replace(story, id=cur.lastrowid)

    def save_story(self, story: DeveloperStory) -> None:
        self.conn.execute(
            """
            UPDATE developer_stories
               SET story_type = ?, title = ?, description = ?, instructions = ?,
                   priority = ?, status = ?, git_branch = ?, git_worktree = ?,
                   started_at = ?, completed_at = ?, error_message = ?,
                   metadata_json = ?
             WHERE id = ?
            """,
            (
                story.story_type.value,
                story.title,
                story.description,
                story.instructions,
                story.priority,
                story.status.value,
                story.git_branch,
                story.git_worktree,
                _ts(story.started_at),
                _ts(story.completed_at),
                story.error_message,
                json.dumps(story.metadata or {}),
                story.id,
            ),
        )

    def get_story(self, story_id: int) -> Optional[DeveloperStory]:
        row = self.conn.execute(
            "SELECT * FROM developer_stories WHERE id = ?", (story_id,)
        ).fetchone()
        return self._row_to_story(row) if row else None

    def list_stories(
        self,
        status: StatusFilter = None,
        work_item_id: Optional[int] = None,
    ) -> list[DeveloperStory]:
        """List stories ordered by id, optionally filtered by status(es) and parent."""
        clauses = []
        params: list = []
        if status is not None:
            statuses = [status] if isinstance(status, StoryStatus) else list(status)
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if work_item_id is not None:
            clauses.append("work_item_id = ?")
            params.append(work_item_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM developer_stories{where} ORDER BY id", params
        ).fetchall()
        return [self._row_to_story(r) for r in rows]

    def get_ready_with_resolved_dependencies(self) -> list[DeveloperStory]:
        """Ready stories whose direct required stories are all completed."""
        rows = self.conn.execute(
            """
            SELECT s.* FROM developer_stories s
             WHERE s.status = ?
               AND NOT EXISTS (
                 SELECT 1 FROM developer_story_dependencies d
                   JOIN developer_stories r ON r.id = d.required_story_id
                  WHERE d.dependent_story_id = s.id AND r.status != ?
               )
             ORDER BY s.id
            """,
            (StoryStatus.READY.value, StoryStatus.COMPLETED.value),
        ).fetchall()
        return [self._row_to_story(r) for r in rows]

    # --- Dependencies ---

    def add_dependency(self, dep: DeveloperStoryDependency) -> DeveloperStoryDependency:
        cur = self.conn.execute(
            """
            INSERT INTO developer_story_dependencies
              (dependent_story_id, required_story_id, description, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                dep.dependent_story_id,
                dep.required_story_id,
                dep.description,
                _ts(dep.created_at),
            ),
        )
        return replace(dep, id=cur.lastrowid)

    def get_dependencies(self, story_id: int) -> list[DeveloperStoryDependency]:
        """Edges where story_id is the dependent."""
        rows = self.conn.execute(
            "SELECT * FROM developer_story_dependencies WHERE dependent_story_id = ? ORDER BY id",
            (story_id,),
        ).fetchall()
        return [self._row_to_dependency(r) for r in rows]

    def list_dependencies(self, work_item_id: Optional[int] = None) -> list[DeveloperStoryDependency]:
        if work_item_id is None:
            rows = self.conn.execute(
                "SELECT * FROM developer_story_dependencies ORDER BY id"
            ).fetchall()
        else:
            rows = self.conn.execute(
                """
                SELECT d.* FROM developer_story_dependencies d
                  JOIN developer_stories s ON s.id = d.dependent_story_id
                 WHERE s.work_item_id = ?
                 ORDER BY d.id
                """,
                (work_item_id,),
            ).fetchall()
        return [self._row_to_dependency(r) for r in rows]

    def get_required_stories(self, story_id: int) -> list[DeveloperStory]:
        """Stories that story_id directly depends on."""
        rows = self.conn.execute(
            """
            SELECT r.* FROM developer_story_dependencies d
              JOIN developer_stories r ON r.id = d.required_story_id
             WHERE d.dependent_story_id = ?
             ORDER BY r.id
            """,
            (story_id,),
        ).fetchall()
        return [self._row_to_story(r) for r in rows]

    def get_dependent_stories(self, story_id: int) -> list[DeveloperStory]:
        """Stories that directly depend on story_id."""
        rows = self.conn.execute(
            """
            SELECT s.* FROM developer_story_dependencies d
              JOIN developer_stories s ON s.id = d.dependent_story_id
             WHERE d.required_story_id = ?
             ORDER BY s.id
            """,
            (story_id,),
        ).fetchall()
        return [self._row_to_story(r) for r in rows]

    # --- Execution logs ---

    def append_log(self, entry: ExecutionLog) -> ExecutionLog:
        cur = self.conn.execute(
            """
            INSERT INTO execution_logs
              (developer_story_id, event_type, timestamp, details, error_message, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.developer_story_id,
                entry.event_type.value,
                _ts(entry.timestamp),
                entry.details,
                entry.error_message,
                json.dumps(entry.metadata) if entry.metadata is not None else None,
            ),
        )
        return replace(entry, id=cur.lastrowid)

    def list_logs(self, story_id: int) -> list[ExecutionLog]:
        rows = self.conn.execute(
            "SELECT * FROM execution_logs WHERE developer_story_id = ? ORDER BY id",
            (story_id,),
        ).fetchall()
        return [self._row_to_log(r) for r in rows]

    # --- Row mapping ---

    @staticmethod
    def _row_to_work_item(row: sqlite3.Row) -> WorkItem:
        return WorkItem(
            id=row["id"],
            type=WorkItemType(row["type"]),
            title=row["title"],
            description=row["description"],
            acceptance_criteria=row["acceptance_criteria"],
            priority=row["priority"],
            status=WorkItemStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_story(row: sqlite3.Row) -> DeveloperStory:
        return DeveloperStory(
            id=row["id"],
            work_item_id=row["work_item_id"],
            story_type=StoryType(row["story_type"]),
            title=row["title"],
            description=row["description"],
            instructions=row["instructions"],
            priority=row["priority"],
            status=StoryStatus(row["status"]),
            git_branch=row["git_branch"],
            git_worktree=row["git_worktree"],
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            error_message=row["error_message"],
            metadata=json.loads(row["metadata_json"] or "{}"),
        )

    @staticmethod
    def _row_to_dependency(row: sqlite3.Row) -> DeveloperStoryDependency:
        return DeveloperStoryDependency(
            id=row["id"],
            dependent_story_id=row["dependent_story_id"],
            required_story_id=row["required_story_id"],
            description=row["description"],
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> ExecutionLog:
        return ExecutionLog(
            id=row["id"],
            developer_story_id=row["developer_story_id"],
            event_type=ExecutionEventType(row["event_type"]),
            timestamp=_parse_ts(row["timestamp"]),
            details=row["details"],
            error_message=row["error_message"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
        )
