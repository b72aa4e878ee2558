#!/usr/bin/env python
"""Seed script for the retailer directory.

Creates the tables if they are missing, optionally creates a tenant, and
adds or updates retailer directory entries. Entries are read from a JSON
file (a list of objects with name, sender_domains and optional
sender_patterns / website_url / return_policy_days) or, without a file,
from a small built-in list.

Usage:
    python backend/scripts/seed_retailers.py
    python backend/scripts/seed_retailers.py retailers.json
    TENANT_NAME="Household" python backend/scripts/seed_retailers.py

Environment Variables:
    DATABASE_URL: Database connection string
    TENANT_NAME: If set, a tenant with this name is created and its id printed
"""

import json
import os
import sys
from pathlib import Path

# Add backend/src to Python path
backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from sqlalchemy.exc import SQLAlchemyError

from database import engine, get_db_session
from domain.retailers.matcher import normalize_retailer_name
from models import Base, Retailer, Tenant

DEFAULT_RETAILERS = [
    {"name": "Amazon", "sender_domains": ["amazon.com"], "return_policy_days": 30},
    {"name": "Best Buy", "sender_domains": ["bestbuy.com", "emailinfo.bestbuy.com"]},
    {"name": "Target", "sender_domains": ["target.com"], "sender_patterns": [r"^orders@([a-z0-9-]+\.)*target\.com$"]},
]


def load_entries(path):
    if path is None:
        return DEFAULT_RETAILERS
    with open(path, encoding="utf-8") as fh:
        entries = json.load(fh)
    if not isinstance(entries, list):
        raise ValueError("Retailer file must contain a JSON list")
    return entries


def upsert_retailer(session, entry):
    """Insert or update one directory entry keyed by normalized name.

    Returns:
        tuple: (Retailer, created)
    """
    normalized = normalize_retailer_name(entry["name"])
    retailer = session.query(Retailer).filter(Retailer.normalized_name == normalized).first()
    created = retailer is None
    if created:
        retailer = Retailer(name=entry["name"], normalized_name=normalized)
        session.add(retailer)

    retailer.sender_domains = [d.lower() for d in entry.get("sender_domains", [])]
    retailer.sender_patterns = list(entry.get("sender_patterns", []))
    retailer.website_url = entry.get("website_url")
    retailer.return_policy_days = entry.get("return_policy_days")
    return retailer, created


def main():
    """Create schema, tenant and retailer entries."""
    path = sys.argv[1] if len(sys.argv) > 1 else None

    try:
        entries = load_entries(path)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not read retailer file: {e}")
        sys.exit(1)

    try:
        Base.metadata.create_all(bind=engine)

        with get_db_session() as session:
            tenant_name = os.getenv("TENANT_NAME")
            if tenant_name:
                tenant = Tenant(name=tenant_name)
                session.add(tenant)
                session.flush()
                print("SUCCESS: Tenant created")
                print(f"  ID:   {tenant.id}")
                print(f"  Name: {tenant.name}")

            for entry in entries:
                retailer, created = upsert_retailer(session, entry)
                print(f"{'Created' if created else 'Updated'} retailer {retailer.name}: {retailer.sender_domains}")

    except SQLAlchemyError as e:
        print(f"ERROR: Failed to seed retailers: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
