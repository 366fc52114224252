"""
app/backups.py

Backup / restore of the business data.

Layout under BACKUP_DIR:
    2026-01-31_235959/
        master_backup.json      {"version", "created_at", "created_by", "entities": {name: [rows]}}
        backup.xlsx             (optional, one sheet per entity)

Rules:
- Writes go to a temp file first and are moved into place (no half-written backups).
- FIFO retention: only the newest MAX_BACKUPS folders are kept.
- Restore replaces every business entity in ONE transaction; users, notifications
  and the audit trail are kept. Anything fails -> rollback, nothing changes.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app
from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import BACKUP_MODELS, EventService, package_services

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1
MASTER_FILE = "master_backup.json"
SHEET_FILE = "backup.xlsx"
_FOLDER_RE = re.compile(r"^[0-9A-Za-z_\-]+$")


class BackupError(Exception):
    """Backup/restore failed (bad input, missing folder, corrupt file, DB error)."""


# ---------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------
def _to_json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _from_json_value(column, value: Any) -> Any:
    if value is None:
        return None
    python_type = None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is Decimal:
        return Decimal(str(value))
    return value


def _model_rows(model) -> List[Dict[str, Any]]:
    columns = list(model.__table__.columns)
    rows = []
    for instance in model.query.order_by(model.id.asc()).all():
        rows.append({c.name: _to_json_value(getattr(instance, c.name)) for c in columns})
    return rows


def snapshot() -> Dict[str, List[Dict[str, Any]]]:
    """All business entities as JSON-safe rows."""
    entities = {model.__name__: _model_rows(model) for model in BACKUP_MODELS}
    links = db.session.execute(package_services.select()).all()
    entities["PackageService"] = [{"package_id": p, "service_id": s} for p, s in links]
    return entities


# ---------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------
def backup_root() -> Path:
    root = Path(current_app.config["BACKUP_DIR"])
    root.mkdir(parents=True, exist_ok=True)
    return root


def _new_folder(root: Path, now: datetime) -> Path:
    base = now.strftime("%Y-%m-%d_%H%M%S")
    candidate = root / base
    suffix = 1
    while candidate.exists():
        candidate = root / f"{base}-{suffix}"
        suffix += 1
    candidate.mkdir(parents=True)
    return candidate


def _resolve_folder(name: str) -> Path:
    if not name or not _FOLDER_RE.match(name):
        raise BackupError("Invalid backup name.")
    folder = backup_root() / name
    if not (folder / MASTER_FILE).is_file():
        raise BackupError(f"Backup '{name}' not found.")
    return folder


def _atomic_write_text(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def _backup_folders(root: Path) -> List[Path]:
    """Backup folders, newest first (folder names sort chronologically)."""
    folders = [p for p in root.iterdir() if p.is_dir() and (p / MASTER_FILE).is_file()]
    return sorted(folders, key=lambda p: p.name, reverse=True)


def _enforce_retention(root: Path, keep: int) -> List[str]:
    removed = []
    for folder in _backup_folders(root)[keep:]:
        shutil.rmtree(folder)
        removed.append(folder.name)
    if removed:
        logger.info("Backup retention removed %s", ", ".join(removed))
    return removed


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------
def create_backup(created_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Write a JSON backup; returns {"name", "counts", "removed"}."""
    now = now or datetime.now()
    root = backup_root()
    entities = snapshot()

    payload = {
        "version": BACKUP_VERSION,
        "created_at": now.isoformat(timespec="seconds"),
        "created_by": created_by,
        "entities": entities,
    }

    folder = _new_folder(root, now)
    try:
        _atomic_write_text(folder / MASTER_FILE, json.dumps(payload, ensure_ascii=False, indent=2))
    except OSError as exc:
        shutil.rmtree(folder, ignore_errors=True)
        raise BackupError(f"Could not write backup: {exc}") from exc

    removed = _enforce_retention(root, int(current_app.config.get("MAX_BACKUPS", 30)))
    counts = {name: len(rows) for name, rows in entities.items()}
    logger.info("Backup %s created by %s (%s)", folder.name, created_by, counts)
    return {"name": folder.name, "counts": counts, "removed": removed}


def create_spreadsheet_backup(created_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Write backup.xlsx (one sheet per entity) into a new backup folder."""
    result = create_backup(created_by=created_by, now=now)
    folder = backup_root() / result["name"]
    entities = snapshot()

    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in entities.items():
        sheet = workbook.create_sheet(title=name[:31])
        headers = list(rows[0].keys()) if rows else []
        if headers:
            sheet.append(headers)
        for row in rows:
            sheet.append(
                [json.dumps(v, ensure_ascii=False) if isinstance(v, (list, dict)) else v for v in row.values()]
            )
        for idx, header in enumerate(headers, start=1):
            sheet.column_dimensions[get_column_letter(idx)].width = max(12, len(header) + 2)

    path = folder / SHEET_FILE
    try:
        workbook.save(str(path))
    except OSError as exc:
        raise BackupError(f"Could not write spreadsheet: {exc}") from exc

    result["spreadsheet"] = str(path)
    return result


def list_backups() -> List[Dict[str, Any]]:
    """Newest first: name, created_at, created_by, counts, has_spreadsheet."""
    items = []
    for folder in _backup_folders(backup_root()):
        try:
            payload = json.loads((folder / MASTER_FILE).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable backup %s: %s", folder.name, exc)
            continue
        items.append(
            {
                "name": folder.name,
                "created_at": payload.get("created_at"),
                "created_by": payload.get("created_by"),
                "counts": {k: len(v) for k, v in (payload.get("entities") or {}).items()},
                "has_spreadsheet": (folder / SHEET_FILE).is_file(),
            }
        )
    return items


def spreadsheet_path(name: str) -> Path:
    path = _resolve_folder(name) / SHEET_FILE
    if not path.is_file():
        raise BackupError("This backup has no spreadsheet.")
    return path


def load_backup(name: str) -> Dict[str, Any]:
    folder = _resolve_folder(name)
    try:
        payload = json.loads((folder / MASTER_FILE).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise BackupError(f"Backup '{name}' is unreadable: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("entities"), dict):
        raise BackupError(f"Backup '{name}' has an unexpected format.")
    return payload


def _insert_rows(model, rows: List[Dict[str, Any]]) -> int:
    columns = {c.name: c for c in model.__table__.columns}
    for row in rows:
        values = {k: _from_json_value(columns[k], v) for k, v in row.items() if k in columns}
        db.session.add(model(**values))
    db.session.flush()
    return len(rows)


def restore_from_backup(name: str, confirm: bool = False) -> Dict[str, int]:
    """
    Replace all business data with the named backup.

    confirm must be True; this is irreversible (create a backup first).
    """
    if not confirm:
        raise BackupError("Restore not confirmed. All current data would be replaced.")

    payload = load_backup(name)
    entities = payload["entities"]
    restored: Dict[str, int] = {}

    try:
        db.session.execute(package_services.delete())
        for model in reversed(BACKUP_MODELS):
            model.query.delete()
        db.session.flush()

        for model in BACKUP_MODELS:
            rows = entities.get(model.__name__) or []
            if model is EventService:
                # package main items before their children
                parents = [r for r in rows if not r.get("parent_package_event_service_id")]
                children = [r for r in rows if r.get("parent_package_event_service_id")]
                restored[model.__name__] = _insert_rows(model, parents) + _insert_rows(model, children)
            else:
                restored[model.__name__] = _insert_rows(model, rows)

        links = entities.get("PackageService") or []
        if links:
            db.session.execute(package_services.insert(), links)
        restored["PackageService"] = len(links)

        db.session.commit()
    except (SQLAlchemyError, KeyError, TypeError, ValueError) as exc:
        db.session.rollback()
        logger.exception("Restore from %s failed", name)
        raise BackupError(f"Restore failed: {exc}") from exc

    logger.info("Restored backup %s: %s", name, restored)
    return restored
