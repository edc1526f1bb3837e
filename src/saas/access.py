"""Project access control — ownership, memberships and permission sets.

Ownership is a field on the project, never a membership row: the recorded
owner resolves to OWNER no matter what membership rows exist for them.
Everyone else needs an active membership row.

Scoped permissions (``update_own``, ``delete_own``) are not enforceable from
the permission string alone. ``check_resource_permission`` is the place that
compares the resource's owner with the caller; route handlers must call it
before mutating a specific resource.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from uuid_extensions import uuid7

from src.core.exceptions import (
    AccessDeniedError,
    GateBaseError,
    MemberConflictError,
    MemberNotFoundError,
    PermissionInsufficientError,
    ProjectNotFoundError,
)
from src.core.interfaces import BaseMembershipRepository, BaseProjectRepository
from src.core.logging import get_logger
from src.core.types import AccessLevel, Membership, Project, utcnow

log = get_logger(__name__)

PERM_READ = "read"
PERM_CREATE = "create"
PERM_UPDATE = "update"
PERM_UPDATE_OWN = "update_own"
PERM_DELETE = "delete"
PERM_DELETE_OWN = "delete_own"
PERM_MANAGE_MEMBERS = "manage_members"
PERM_MANAGE_PROJECT = "manage_project"
PERM_TRANSFER_OWNERSHIP = "transfer_ownership"

SCOPED_PERMISSIONS: dict[str, str] = {
    PERM_UPDATE: PERM_UPDATE_OWN,
    PERM_DELETE: PERM_DELETE_OWN,
}

PROJECT_NOT_FOUND_MESSAGE = "Project not found or inactive"


@dataclass(frozen=True)
class AccessLevelPolicy:
    level: AccessLevel
    name: str
    display_name: str
    permissions: frozenset[str]
    description: str


ACCESS_POLICIES: MappingProxyType[AccessLevel, AccessLevelPolicy] = MappingProxyType({
    AccessLevel.VIEWER: AccessLevelPolicy(
        AccessLevel.VIEWER, "Viewer", "Viewer",
        frozenset({PERM_READ}),
        "Can view project information only",
    ),
    AccessLevel.CONTRIBUTOR: AccessLevelPolicy(
        AccessLevel.CONTRIBUTOR, "Contributor", "Contributor",
        frozenset({PERM_READ, PERM_CREATE, PERM_UPDATE_OWN}),
        "Can create work and edit their own",
    ),
    AccessLevel.EDITOR: AccessLevelPolicy(
        AccessLevel.EDITOR, "Editor", "Editor",
        frozenset({PERM_READ, PERM_CREATE, PERM_UPDATE, PERM_DELETE_OWN}),
        "Can edit everything and delete their own work",
    ),
    AccessLevel.MANAGER: AccessLevelPolicy(
        AccessLevel.MANAGER, "Manager", "Manager",
        frozenset({PERM_READ, PERM_CREATE, PERM_UPDATE, PERM_DELETE, PERM_MANAGE_MEMBERS}),
        "Can manage the project and its members",
    ),
    AccessLevel.OWNER: AccessLevelPolicy(
        AccessLevel.OWNER, "Owner", "Owner",
        frozenset({
            PERM_READ, PERM_CREATE, PERM_UPDATE, PERM_DELETE, PERM_MANAGE_MEMBERS,
            PERM_MANAGE_PROJECT, PERM_TRANSFER_OWNERSHIP,
        }),
        "All permissions, including project deletion and ownership transfer",
    ),
})


def permissions_for(level: AccessLevel) -> frozenset[str]:
    return ACCESS_POLICIES[level].permissions


@dataclass(frozen=True)
class ProjectAccess:
    """Resolved access of one account to one project."""

    has_access: bool
    access_level: AccessLevel | None
    permissions: frozenset[str]
    message: str
    is_owner: bool = False
    member: Membership | None = None
    project_found: bool = True

    def allows(self, permission: str) -> bool:
        return self.has_access and permission in self.permissions

    def scope_for(self, permission: str) -> str | None:
        """``"any"``, ``"own"``, or None when neither form is held."""
        if self.allows(permission):
            return "any"
        scoped = SCOPED_PERMISSIONS.get(permission)
        if scoped is not None and self.allows(scoped):
            return "own"
        return None


@dataclass(frozen=True)
class UserProject:
    project: Project
    access_level: AccessLevel
    permissions: frozenset[str]
    is_owner: bool
    joined_at: datetime = field(default_factory=utcnow)


_NO_ACCESS: frozenset[str] = frozenset()


class AccessControlResolver:
    """Resolves effective roles and authorizes membership mutations."""

    def __init__(
        self,
        projects: BaseProjectRepository,
        memberships: BaseMembershipRepository,
    ) -> None:
        self._projects = projects
        self._memberships = memberships

    # ── Resolution ───────────────────────────────────────────────

    async def check_project_access(self, account_id: str, project_id: str) -> ProjectAccess:
        project = await self._projects.get(project_id)
        if project is None or not project.is_active:
            return ProjectAccess(
                False, None, _NO_ACCESS, PROJECT_NOT_FOUND_MESSAGE, project_found=False,
            )

        if project.owner_id == account_id:
            return ProjectAccess(
                has_access=True,
                access_level=AccessLevel.OWNER,
                permissions=permissions_for(AccessLevel.OWNER),
                message="Project owner",
                is_owner=True,
            )

        member = await self._memberships.find_active(account_id, project_id)
        if member is None:
            return ProjectAccess(False, None, _NO_ACCESS, "Not a member of this project")

        policy = ACCESS_POLICIES[member.access_level]
        return ProjectAccess(
            has_access=True,
            access_level=member.access_level,
            permissions=policy.permissions,
            message=f"{policy.display_name} access",
            member=member,
        )

    async def check_permission(self, account_id: str, project_id: str, permission: str) -> bool:
        access = await self.check_project_access(account_id, project_id)
        return access.allows(permission)

    async def check_resource_permission(
        self,
        account_id: str,
        project_id: str,
        action: str,
        resource_owner_id: str | None,
    ) -> bool:
        """Authorize ``action`` on one resource, honouring ``*_own`` scoping."""
        access = await self.check_project_access(account_id, project_id)
        scope = access.scope_for(action)
        if scope == "any":
            return True
        if scope == "own":
            return resource_owner_id is not None and resource_owner_id == account_id
        return False

    @staticmethod
    def denial_for(access: ProjectAccess, project_id: str, permission: str) -> GateBaseError:
        """The error a caller lacking ``permission`` should see."""
        if not access.project_found:
            return ProjectNotFoundError(access.message, context={"project_id": project_id})
        if not access.has_access:
            return AccessDeniedError(access.message, context={"project_id": project_id})
        return PermissionInsufficientError(
            f"'{permission}' permission required",
            required_permission=permission,
            access_level=access.access_level.name if access.access_level is not None else None,
            context={"project_id": project_id},
        )

    async def require_permission(self, account_id: str, project_id: str, permission: str) -> ProjectAccess:
        """Resolve access and raise unless ``permission`` is held."""
        access = await self.check_project_access(account_id, project_id)
        if not access.allows(permission):
            raise self.denial_for(access, project_id, permission)
        return access

    # ── Membership management ────────────────────────────────────

    @staticmethod
    def _reject_owner_level(level: AccessLevel) -> None:
        if level is AccessLevel.OWNER:
            raise PermissionInsufficientError(
                "Ownership cannot be granted through membership; transfer it instead",
                required_permission=PERM_TRANSFER_OWNERSHIP,
            )

    async def _member_in_project(self, project_id: str, member_id: str) -> Membership:
        member = await self._memberships.get(member_id)
        if member is None or member.project_id != project_id or not member.is_active:
            raise MemberNotFoundError(
                "Member not found",
                context={"project_id": project_id, "member_id": member_id},
            )
        return member

    async def add_member(
        self,
        project_id: str,
        account_id: str,
        access_level: AccessLevel,
        invited_by: str,
    ) -> Membership:
        await self.require_permission(invited_by, project_id, PERM_MANAGE_MEMBERS)
        self._reject_owner_level(access_level)

        existing = await self.check_project_access(account_id, project_id)
        if existing.has_access:
            raise MemberConflictError(
                "Account is already a project member",
                context={"project_id": project_id, "account_id": account_id},
            )

        member = await self._memberships.add(Membership(
            account_id=account_id,
            project_id=project_id,
            access_level=access_level,
            invited_by=invited_by,
        ))
        log.info(
            "member_added",
            project_id=project_id,
            account_id=account_id,
            access_level=access_level.name,
            invited_by=invited_by,
        )
        return member

    async def update_member_access(
        self,
        project_id: str,
        member_id: str,
        new_access_level: AccessLevel,
        updated_by: str,
    ) -> Membership:
        await self.require_permission(updated_by, project_id, PERM_MANAGE_MEMBERS)
        self._reject_owner_level(new_access_level)

        member = await self._member_in_project(project_id, member_id)
        old_level = member.access_level
        member.access_level = new_access_level
        member.updated_at = utcnow()
        await self._memberships.save(member)

        log.info(
            "member_access_updated",
            project_id=project_id,
            member_id=member_id,
            old=old_level.name,
            new=new_access_level.name,
            updated_by=updated_by,
        )
        return member

    async def remove_member(self, project_id: str, member_id: str, removed_by: str) -> Membership:
        """Soft delete: the row stays for audit with ``is_active=False``."""
        await self.require_permission(removed_by, project_id, PERM_MANAGE_MEMBERS)

        member = await self._member_in_project(project_id, member_id)
        member.is_active = False
        member.updated_at = utcnow()
        await self._memberships.save(member)

        log.info("member_removed", project_id=project_id, member_id=member_id, removed_by=removed_by)
        return member

    async def create_project(self, owner_id: str, name: str, description: str = "") -> Project:
        project = await self._projects.add(Project(
            project_id=str(uuid7()),
            owner_id=owner_id,
            name=name,
            description=description,
        ))
        log.info("project_created", project_id=project.project_id, owner_id=owner_id)
        return project

    async def get_project_members(self, project_id: str, requester_id: str) -> list[Membership]:
        await self.require_permission(requester_id, project_id, PERM_READ)
        return await self._memberships.list_for_project(project_id, active_only=True)

    async def transfer_ownership(self, project_id: str, new_owner_id: str, actor_id: str) -> Project:
        """Hand the project to an active member; the old owner stays on as MANAGER."""
        await self.require_permission(actor_id, project_id, PERM_TRANSFER_OWNERSHIP)

        project = await self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(PROJECT_NOT_FOUND_MESSAGE, context={"project_id": project_id})
        if new_owner_id == project.owner_id:
            return project

        new_owner_row = await self._memberships.find_active(new_owner_id, project_id)
        if new_owner_row is None:
            raise MemberNotFoundError(
                "New owner must be an active project member",
                context={"project_id": project_id, "account_id": new_owner_id},
            )

        previous_owner = project.owner_id
        project.owner_id = new_owner_id
        await self._projects.save(project)

        # Neither party may keep an older active row next to the new arrangement.
        now = utcnow()
        for row in await self._memberships.list_for_project(project_id, active_only=True):
            if row.account_id in (new_owner_id, previous_owner):
                row.is_active = False
                row.updated_at = now
                await self._memberships.save(row)

        await self._memberships.add(Membership(
            account_id=previous_owner,
            project_id=project_id,
            access_level=AccessLevel.MANAGER,
            invited_by=new_owner_id,
            joined_at=now,
        ))

        log.info(
            "ownership_transferred",
            project_id=project_id,
            previous_owner=previous_owner,
            new_owner=new_owner_id,
        )
        return project

    # ── Listing ──────────────────────────────────────────────────

    async def get_user_projects(self, account_id: str) -> list[UserProject]:
        """Owned and member projects, one entry per project, newest first."""
        by_id: dict[str, UserProject] = {}

        for project in await self._projects.list_owned(account_id):
            by_id[project.project_id] = UserProject(
                project=project,
                access_level=AccessLevel.OWNER,
                permissions=permissions_for(AccessLevel.OWNER),
                is_owner=True,
                joined_at=project.created_at,
            )

        for member in await self._memberships.list_for_account(account_id, active_only=True):
            if member.project_id in by_id:
                continue
            project = await self._projects.get(member.project_id)
            if project is None or not project.is_active:
                continue
            by_id[project.project_id] = UserProject(
                project=project,
                access_level=member.access_level,
                permissions=permissions_for(member.access_level),
                is_owner=False,
                joined_at=member.joined_at,
            )

        return sorted(by_id.values(), key=lambda p: p.joined_at, reverse=True)
