"""Database-backed retailer directory"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.retailers.models import RetailerProfile
from domain.retailers.ports import RetailerDirectoryPort
from models.retailer import Retailer


class SqlRetailerDirectory(RetailerDirectoryPort):
    """Reads active retailers from the global retailer table.

    Profiles are loaded once per instance; workers build a new directory
    per message, so directory edits are picked up on the next message.
    """

    def __init__(self, db: Session):
        self.db = db
        self._profiles: Optional[List[RetailerProfile]] = None

    def list_profiles(self) -> List[RetailerProfile]:
        if self._profiles is None:
            retailers = self.db.execute(
                select(Retailer)
                .where(Retailer.is_active.is_(True))
                .order_by(Retailer.normalized_name.asc())
            ).scalars().all()
            self._profiles = [
                RetailerProfile(
                    retailer_id=r.id,
                    name=r.name,
                    normalized_name=r.normalized_name,
                    sender_domains=tuple(d.lower() for d in (r.sender_domains or [])),
                    sender_patterns=tuple(r.sender_patterns or []),
                )
                for r in retailers
            ]
        return list(self._profiles)

