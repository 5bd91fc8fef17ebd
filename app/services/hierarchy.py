from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.user import User

MAX_HIERARCHY_DEPTH = 10


async def get_direct_reports(db: AsyncSession, manager_id: int) -> List[User]:
    result = await db.execute(select(User).where(User.manager_id == manager_id).order_by(User.id))
    return list(result.scalars().all())


async def get_all_reports(db: AsyncSession, manager_id: int, max_depth: int = MAX_HIERARCHY_DEPTH) -> List[User]:
    """Direct and indirect reports of ``manager_id``, breadth-first.

    manager_id links can form cycles, so nodes are visited once and the walk
    stops after ``max_depth`` levels. The manager is never in the result.
    """
    visited = {manager_id}
    reports: List[User] = []
    frontier = [manager_id]
    depth = 0

    while frontier and depth < max_depth:
        result = await db.execute(
            select(User).where(User.manager_id.in_(frontier)).order_by(User.id)
        )
        next_frontier = []
        for user in result.scalars().all():
            if user.id in visited:
                continue
            visited.add(user.id)
            reports.append(user)
            next_frontier.append(user.id)
        frontier = next_frontier
        depth += 1

    return reports
