from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Optional

from crm_shared import format_dt
from shared.db import File, FileVersion

logger = logging.getLogger(__name__)

AUTO_SAVE_SUMMARY = "Auto-save version"


class FileNotFoundForUser(LookupError):
    pass


def coerce_content(content) -> Optional[str]:
    """Text as stored; JSON values other than strings are kept as their JSON text."""
    if content is None or isinstance(content, str):
        return content
    return json.dumps(content)


def content_size(content: Optional[str]) -> int:
    return len(content.encode("utf-8")) if content else 0


def file_to_dict(file: File) -> dict:
    return {
        "id": file.id,
        "user_id": file.user_id,
        "name": file.name,
        "content": file.content,
        "type": file.type,
        "version": file.version,
        "file_size": file.file_size,
        "url": file.url,
        "created_at": format_dt(file.created_at),
        "updated_at": format_dt(file.updated_at),
    }


def _archive_version(db, file: File, user_id: str) -> FileVersion:
    snapshot = FileVersion(
        file_id=file.id,
        version_number=file.version,
        content=file.content,
        created_by=user_id,
        change_summary=AUTO_SAVE_SUMMARY,
    )
    db.add(snapshot)
    return snapshot


def save_file(
    db,
    *,
    user_id: str,
    file_id: Optional[str],
    name: Optional[str],
    content: Optional[str],
    file_type: Optional[str],
    now: Optional[datetime] = None,
) -> File:
    """
    Create a file, or update one owned by user_id.

    A content change archives the stored content under the current version
    number before bumping the version; a name-only save leaves the version
    untouched and just refreshes updated_at.
    """
    now = now or datetime.utcnow()
    content = coerce_content(content)

    if file_id:
        existing = db.query(File).filter_by(id=str(file_id), user_id=user_id).one_or_none()
        if not existing:
            raise FileNotFoundForUser("File not found")

        if existing.content != content:
            _archive_version(db, existing, user_id)
            existing.content = content
            existing.version = (existing.version or 1) + 1
            existing.file_size = content_size(content)
            logger.info("File %s content changed; now version %s", existing.id, existing.version)
        if name:
            existing.name = name
        existing.updated_at = now
        db.flush()
        return existing

    if not name:
        raise ValueError("name is required")
    file = File(
        user_id=user_id,
        name=name,
        content=content,
        type=file_type,
        version=1,
        file_size=content_size(content),
        url=f"/{file_type}/{int(time.time() * 1000)}",
        created_at=now,
        updated_at=now,
    )
    db.add(file)
    db.flush()
    return file
