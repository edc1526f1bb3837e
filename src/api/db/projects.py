"""DB-backed project and membership repositories."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.interfaces import BaseMembershipRepository, BaseProjectRepository
from src.core.types import AccessLevel, Membership, Project


class ProjectRepository(BaseProjectRepository):

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, project_id: str) -> Project | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text("SELECT * FROM projects WHERE project_id = :pid"),
                {"pid": project_id},
            )
            r = row.mappings().first()
            return self._row_to_project(r) if r is not None else None

    async def add(self, project: Project) -> Project:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO projects
                        (project_id, owner_id, name, description, is_active, created_at)
                    VALUES
                        (:pid, :owner, :name, :desc, :active, :created)
                    """
                ),
                self._project_params(project),
            )
        return project

    async def save(self, project: Project) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    UPDATE projects SET
                        owner_id = :owner,
                        name = :name,
                        description = :desc,
                        is_active = :active
                    WHERE project_id = :pid
                    """
                ),
                self._project_params(project),
            )

    async def list_owned(self, owner_id: str) -> list[Project]:
        async with self._engine.begin() as conn:
            rows = await conn.execute(
                text(
                    "SELECT * FROM projects "
                    "WHERE owner_id = :owner AND is_active = true"
                ),
                {"owner": owner_id},
            )
            return [self._row_to_project(r) for r in rows.mappings().all()]

    @staticmethod
    def _project_params(project: Project) -> dict[str, object]:
        return {
            "pid": project.project_id,
            "owner": project.owner_id,
            "name": project.name,
            "desc": project.description,
            "active": project.is_active,
            "created": project.created_at,
        }

    @staticmethod
    def _row_to_project(r: object) -> Project:
        return Project(
            project_id=r["project_id"],  # type: ignore[index]
            owner_id=r["owner_id"],  # type: ignore[index]
            name=r["name"] or "",  # type: ignore[index]
            description=r["description"] or "",  # type: ignore[index]
            is_active=r["is_active"],  # type: ignore[index]
            created_at=r["created_at"],  # type: ignore[index]
        )


class MembershipRepository(BaseMembershipRepository):
    """``project_members`` rows. Removal is an UPDATE, never a DELETE."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def find_active(self, account_id: str, project_id: str) -> Membership | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text(
                    "SELECT * FROM project_members "
                    "WHERE account_id = :aid AND project_id = :pid AND is_active = true "
                    "ORDER BY joined_at DESC LIMIT 1"
                ),
                {"aid": account_id, "pid": project_id},
            )
            r = row.mappings().first()
            return self._row_to_member(r) if r is not None else None

    async def get(self, member_id: str) -> Membership | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text("SELECT * FROM project_members WHERE member_id = :mid"),
                {"mid": member_id},
            )
            r = row.mappings().first()
            return self._row_to_member(r) if r is not None else None

    async def add(self, membership: Membership) -> Membership:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    INSERT INTO project_members
                        (member_id, account_id, project_id, access_level,
                         invited_by, is_active, joined_at, updated_at)
                    VALUES
                        (:mid, :aid, :pid, :level, :invited, :active, :joined, :updated)
                    """
                ),
                self._member_params(membership),
            )
        return membership

    async def save(self, membership: Membership) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text(
                    """
                    UPDATE project_members SET
                        access_level = :level,
                        is_active = :active,
                        updated_at = :updated
                    WHERE member_id = :mid
                    """
                ),
                self._member_params(membership),
            )

    async def list_for_project(self, project_id: str, active_only: bool = True) -> list[Membership]:
        query = "SELECT * FROM project_members WHERE project_id = :pid"
        if active_only:
            query += " AND is_active = true"
        query += " ORDER BY joined_at DESC"
        async with self._engine.begin() as conn:
            rows = await conn.execute(text(query), {"pid": project_id})
            return [self._row_to_member(r) for r in rows.mappings().all()]

    async def list_for_account(self, account_id: str, active_only: bool = True) -> list[Membership]:
        query = "SELECT * FROM project_members WHERE account_id = :aid"
        if active_only:
            query += " AND is_active = true"
        async with self._engine.begin() as conn:
            rows = await conn.execute(text(query), {"aid": account_id})
            return [self._row_to_member(r) for r in rows.mappings().all()]

    @staticmethod
    def _member_params(m: Membership) -> dict[str, object]:
        return {
            "mid": m.member_id,
            "aid": m.account_id,
            "pid": m.project_id,
            "level": int(m.access_level),
            "invited": m.invited_by,
            "active": m.is_active,
            "joined": m.joined_at,
            "updated": m.updated_at,
        }

    @staticmethod
    def _row_to_member(r: object) -> Membership:
        return Membership(
            account_id=r["account_id"],  # type: ignore[index]
            project_id=r["project_id"],  # type: ignore[index]
            access_level=AccessLevel(r["access_level"]),  # type: ignore[index]
            invited_by=r.get("invited_by"),  # type: ignore[union-attr]
            is_active=r["is_active"],  # type: ignore[index]
            joined_at=r["joined_at"],  # type: ignore[index]
            updated_at=r.get("updated_at"),  # type: ignore[union-attr]
            member_id=r["member_id"],  # type: ignore[index]
        )
