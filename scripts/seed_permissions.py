"""
Seed script to populate the default system roles.

Run this script after database initialization to create the system roles
(org_owner, org_admin, org_member, workspace_owner, workspace_viewer) and
their permission grants. Safe to run repeatedly.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.defaults import DEFAULT_ROLES, seed_system_roles
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Create tables and seed the system roles."""
    log.info("Starting role seeding...")

    # init_db creates the tables and seeds once already
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            roles_map = await seed_system_roles(db)
        except Exception as e:
            log.error(f"Error seeding roles: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Role seeding completed successfully!")
    log.info("")
    log.info("System roles:")
    for role_name, role in roles_map.items():
        log.info(f"  - {role_name} ({role.id}): {DEFAULT_ROLES[role_name]['description']}")


if __name__ == "__main__":
    asyncio.run(main())
