# models/listing.py

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class Listing:
    """
    交易模块只关心物品的归属与可用位，其余字段由物品模块维护
    """

    id: str
    owner_id: str
    is_available: bool = True
    estimated_value: Optional[float] = None
    title: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "isAvailable": self.is_available,
            "estimatedValue": self.estimated_value,
            "title": self.title,
            "category": self.category,
        }

    @staticmethod
    def from_row(row: Dict) -> "Listing":
        value = row.get("estimated_value")
        return Listing(
            id=row["id"],
            owner_id=row["owner_id"],
            is_available=bool(row["is_available"]),
            estimated_value=float(value) if value is not None else None,
            title=row.get("title"),
            category=row.get("category"),
        )
