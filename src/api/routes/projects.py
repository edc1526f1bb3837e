"""Project endpoints — listing, membership management and ownership transfer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.api.deps import GateServices, get_services, require_auth
from src.api.models.schemas import (
    MemberCreate,
    MemberOut,
    MemberUpdate,
    OwnershipTransfer,
    ProjectCreate,
    ProjectOut,
    UserProjectOut,
)
from src.core.types import Membership, Project

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_out(project: Project) -> ProjectOut:
    return ProjectOut(
        project_id=project.project_id,
        owner_id=project.owner_id,
        name=project.name,
        description=project.description,
        created_at=project.created_at,
    )


def _member_out(member: Membership) -> MemberOut:
    return MemberOut(
        member_id=member.member_id,
        account_id=member.account_id,
        project_id=member.project_id,
        access_level=member.access_level.name,
        invited_by=member.invited_by,
        is_active=member.is_active,
        joined_at=member.joined_at,
        updated_at=member.updated_at,
    )


@router.get("", response_model=list[UserProjectOut])
async def list_projects(
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> list[UserProjectOut]:
    """Projects the caller owns or is an active member of, newest first."""
    entries = await services.resolver.get_user_projects(account_id)
    return [
        UserProjectOut(
            **_project_out(e.project).model_dump(),
            access_level=e.access_level.name,
            permissions=sorted(e.permissions),
            is_owner=e.is_owner,
            joined_at=e.joined_at,
        )
        for e in entries
    ]


@router.post("", response_model=ProjectOut, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> ProjectOut:
    project = await services.resolver.create_project(account_id, body.name, body.description)
    return _project_out(project)


@router.get("/{project_id}/members", response_model=list[MemberOut])
async def list_members(
    project_id: str,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> list[MemberOut]:
    members = await services.resolver.get_project_members(project_id, account_id)
    return [_member_out(m) for m in members]


@router.post(
    "/{project_id}/members",
    response_model=MemberOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    project_id: str,
    body: MemberCreate,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> MemberOut:
    member = await services.resolver.add_member(
        project_id, body.account_id, body.access_level, invited_by=account_id,
    )
    return _member_out(member)


@router.patch("/{project_id}/members/{member_id}", response_model=MemberOut)
async def update_member(
    project_id: str,
    member_id: str,
    body: MemberUpdate,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> MemberOut:
    member = await services.resolver.update_member_access(
        project_id, member_id, body.access_level, updated_by=account_id,
    )
    return _member_out(member)


@router.delete("/{project_id}/members/{member_id}", response_model=MemberOut)
async def remove_member(
    project_id: str,
    member_id: str,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> MemberOut:
    """Deactivate a membership. The row is kept for audit."""
    member = await services.resolver.remove_member(project_id, member_id, removed_by=account_id)
    return _member_out(member)


@router.post("/{project_id}/transfer-ownership", response_model=ProjectOut)
async def transfer_ownership(
    project_id: str,
    body: OwnershipTransfer,
    account_id: str = Depends(require_auth),
    services: GateServices = Depends(get_services),
) -> ProjectOut:
    project = await services.resolver.transfer_ownership(
        project_id, body.new_owner_id, actor_id=account_id,
    )
    return _project_out(project)
