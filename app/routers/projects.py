from typing import List
import secrets
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException

from app.database import SessionLocal
from app.deps.auth import require_auth
from app.models.project import Milestone, Project
from app.schemas.project import MilestoneCreate, MilestoneResponse, ProjectCreate, ProjectResponse

router = APIRouter(prefix="/projects", tags=["Projects"])


def _owned_project(db, project_id: str, user_id: str) -> Project:
    row = (
        db.query(Project)
        .filter(
            Project.id == str(project_id),
            Project.user_id == str(user_id),
        )
        .first()
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return row


@router.post("", response_model=ProjectResponse)
def create_project(
    payload: ProjectCreate,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        row = Project(
            id=str(uuid4()),
            user_id=user_id,
            name=payload.name,
            client_name=payload.client_name,
            public_id=secrets.token_urlsafe(8),
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


@router.get("", response_model=List[ProjectResponse])
def list_projects(user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        return (
            db.query(Project)
            .filter(Project.user_id == user_id)
            .order_by(Project.created_at.asc(), Project.id.asc())
            .all()
        )
    finally:
        db.close()


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(project_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        return _owned_project(db, project_id, user_id)
    finally:
        db.close()


@router.post("/{project_id}/milestones", response_model=MilestoneResponse)
def create_milestone(
    project_id: str,
    payload: MilestoneCreate,
    user_id: str = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = _owned_project(db, project_id, user_id)
        row = Milestone(
            id=str(uuid4()),
            project_id=project.id,
            user_id=user_id,
            name=payload.name,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


@router.get("/{project_id}/milestones", response_model=List[MilestoneResponse])
def list_milestones(project_id: str, user_id: str = Depends(require_auth)):
    db = SessionLocal()
    try:
        project = _owned_project(db, project_id, user_id)
        return (
            db.query(Milestone)
            .filter(Milestone.project_id == project.id)
            .order_by(Milestone.created_at.asc(), Milestone.id.asc())
            .all()
        )
    finally:
        db.close()
