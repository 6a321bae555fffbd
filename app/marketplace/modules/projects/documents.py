"""
Client brief: one PDF per project, uploaded once by the owning client.
"""
from __future__ import annotations

import hashlib
import io
from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from werkzeug.utils import secure_filename

from app.marketplace.audit import record_event
from app.marketplace.constants import CLIENT_BRIEF_MAX_BYTES
from app.marketplace.errors import ForbiddenError, NotFoundError, ValidationError
from app.marketplace.modules.projects.models import ClientBriefDocument, Project
from app.marketplace.modules.projects.service import can_view_project, is_owner
from app.marketplace.storage import Storage
from app.marketplace.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User


def file_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "client-brief.pdf"


def pdf_page_count(data: bytes) -> int:
    """Parse the upload with pypdf; anything it cannot read is rejected."""
    if not data.startswith(b"%PDF-"):
        raise ValidationError("The file is not a PDF.")
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = len(reader.pages)
    except (PdfReadError, ValueError, KeyError, OSError) as e:
        raise ValidationError("The PDF could not be read.") from e
    if pages < 1:
        raise ValidationError("The PDF has no pages.")
    return pages


def validate_brief_upload(filename: str, content_type: str | None, data: bytes) -> int:
    if not filename.lower().endswith(".pdf"):
        raise ValidationError("Only PDF files are accepted.")
    if content_type and content_type not in ("application/pdf", "application/octet-stream"):
        raise ValidationError("Only PDF files are accepted.")
    if not data:
        raise ValidationError("The file is empty.")
    if len(data) > CLIENT_BRIEF_MAX_BYTES:
        raise ValidationError("The file exceeds the 5 MB limit.")
    return pdf_page_count(data)


def upload_client_brief(
    s: "Session",
    storage: Storage,
    project: Project,
    *,
    filename: str,
    content_type: str | None,
    data: bytes,
    user: "User",
) -> ClientBriefDocument:
    if not is_owner(user, project):
        raise ForbiddenError("Only the project's client can upload the brief.")
    if project.brief is not None:
        raise ValidationError("A client brief has already been uploaded for this project and cannot be replaced.")
    pages = validate_brief_upload(filename, content_type, data)

    safe_name = sanitize_upload_filename(filename)
    digest = file_digest(data)
    now = datetime.utcnow()
    key = f"projects/{project.id}/documents/{now.strftime('%Y%m%d%H%M%S')}-{digest[:12]}-{safe_name}"
    storage.put_bytes(key, data, content_type="application/pdf")

    doc = ClientBriefDocument(
        project_id=project.id,
        storage_key=key,
        original_filename=safe_name,
        content_type="application/pdf",
        size_bytes=len(data),
        sha256=digest,
        page_count=pages,
        uploaded_by_user_id=user.id,
        uploaded_at=now,
    )
    s.add(doc)
    project.brief = doc
    s.flush()
    record_event(
        s,
        actor=user,
        action="project.client_brief_upload",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"filename": safe_name, "sha256": digest, "size": len(data), "pages": pages},
    )
    return doc


def get_client_brief(project: Project, user: "User") -> ClientBriefDocument:
    if not can_view_project(user, project):
        raise ForbiddenError("You do not have access to this project.")
    if project.brief is None:
        raise NotFoundError("No client brief has been uploaded.")
    return project.brief


def open_client_brief(s: "Session", storage: Storage, project: Project, user: "User") -> tuple[ClientBriefDocument, BinaryIO]:
    doc = get_client_brief(project, user)
    fobj = storage.open(doc.storage_key)
    record_event(
        s,
        actor=user,
        action="project.client_brief_download",
        entity_type="Project",
        entity_id=str(project.id),
        metadata={"filename": doc.original_filename},
    )
    return doc, fobj


def serialize_brief(doc: ClientBriefDocument) -> dict:
    return {
        "id": doc.id,
        "projectId": doc.project_id,
        "filename": doc.original_filename,
        "contentType": doc.content_type,
        "sizeBytes": doc.size_bytes,
        "sha256": doc.sha256,
        "pageCount": doc.page_count,
        "uploadedAt": iso(doc.uploaded_at),
    }
