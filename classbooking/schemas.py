import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from classbooking.errors import InvalidInput

SORT_FIELDS = ("subject", "location", "price", "spaces")


# Collection: lessons
class LessonUpdate(BaseModel):
    """Partial lesson patch. Only the fields the client sent are applied."""

    model_config = ConfigDict(extra="forbid")

    subject: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    spaces: Optional[int] = Field(None, ge=0)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


# Required fields are checked by the order service, not here.
class CartItem(BaseModel):
    id: Optional[str] = None
    subject: Optional[str] = None


class OrderRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    cart: Optional[List[CartItem]] = None


# Collection: orders
class OrderLine(BaseModel):
    lessonId: str
    subject: Optional[str] = None
    quantity: int = Field(1, ge=1)


@dataclass(frozen=True)
class SearchQuery:
    text: str = ""
    number: Optional[float] = None
    sort_by: str = "subject"
    descending: bool = False

    @classmethod
    def parse(
        cls,
        q: Optional[str] = None,
        sort_by: Optional[str] = None,
        order: Optional[str] = None,
    ) -> "SearchQuery":
        text = (q or "").strip()
        sort_by = sort_by or "subject"
        if sort_by not in SORT_FIELDS:
            raise InvalidInput(
                f"Cannot sort by '{sort_by}', expected one of {', '.join(SORT_FIELDS)}",
                fields=["sortBy"],
            )
        order = (order or "asc").lower()
        if order not in ("asc", "desc"):
            raise InvalidInput("Sort order must be 'asc' or 'desc'", fields=["order"])
        return cls(
            text=text,
            number=parse_number(text),
            sort_by=sort_by,
            descending=order == "desc",
        )


def parse_number(text: str) -> Optional[float]:
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def object_id(value: Optional[str], field: str = "id") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise InvalidInput(f"Invalid {field}: {value!r}", fields=[field])
    return ObjectId(value)


def serialize_lesson(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "subject": doc.get("subject"),
        "location": doc.get("location"),
        "price": doc.get("price"),
        "spaces": doc.get("spaces"),
    }


def serialize_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "name": doc["name"],
        "phone": doc["phone"],
        "orderDate": doc["orderDate"],
        "orderDetails": [
            OrderLine(
                lessonId=str(line["lessonId"]),
                subject=line.get("subject"),
                quantity=line.get("quantity", 1),
            ).model_dump()
            for line in doc["orderDetails"]
        ],
        "totalSpaces": doc["totalSpaces"],
    }
