#!/usr/bin/env python3
"""
WFM - Default role seeding

Creates the system-default role ladder (Intern, Senior Staff, Team Lead,
Manager, Owner) for a company. Roles whose names already exist in the
company are left untouched, so the script can be re-run safely.

Usage:
    python scripts/seed_default_roles.py COMP-0001
    python scripts/seed_default_roles.py COMP-0001 --create-company "Acme Billing"
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select

from app.db.session import AsyncSessionLocal, engine
from app.models.company import Company
from app.services.role_registry import RoleRegistry


async def seed(company_id: str, company_name: str = None) -> int:
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Company).where(Company.company_id == company_id))
        company = result.scalar_one_or_none()
        if company is None:
            if not company_name:
                print(f"Company {company_id} does not exist. Pass --create-company NAME to create it.")
                return 1
            db.add(Company(company_id=company_id, company_name=company_name))
            await db.commit()
            print(f"Created company {company_id} ({company_name})")

    registry = RoleRegistry(AsyncSessionLocal)
    created = await registry.seed_default_roles(company_id)
    for role in created:
        print(f"  {role.role_id}  level {role.role_level}  {role.role_name}")
    print(f"Seeded {len(created)} default roles for {company_id}")
    await engine.dispose()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Seed the default role ladder for a company"
    )
    parser.add_argument(
        "company_id",
        help="Company (tenant) identifier"
    )
    parser.add_argument(
        "--create-company",
        metavar="NAME",
        help="Create the company with this name if it does not exist"
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(seed(args.company_id, args.create_company)))


if __name__ == "__main__":
    main()
