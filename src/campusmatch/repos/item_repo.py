"""Item Repository."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from campusmatch.db.schema import Item
from campusmatch.errors import NotFoundError, ValidationError

ITEM_STATUSES = ("draft", "submitted", "matched", "resolved", "archived")
# items that can still be paired with a new report
CANDIDATE_STATUSES = ("submitted",)
# items whose descriptions make up the text corpus
CORPUS_STATUSES = ("submitted", "matched")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def opposite_type(submission_type: str) -> str:
    if submission_type == "lost":
        return "found"
    if submission_type == "found":
        return "lost"
    raise ValidationError(f"unknown submission type: {submission_type!r}")


class ItemRepository:
    """Repository for items table operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        submission_type: str,
        description: str,
        category: str = "",
        *,
        image_urls: Optional[Iterable[str]] = None,
        detected_objects: Optional[Iterable[str]] = None,
        image_embedding: Optional[Iterable[float]] = None,
        commit: bool = True,
        **fields,
    ) -> Item:
        """Insert an item report. Used by the CLI, the tests and upstream importers."""
        opposite_type(submission_type)
        status = fields.pop("status", "submitted")
        if status not in ITEM_STATUSES:
            raise ValidationError(f"unknown item status: {status!r}")
        row = Item(
            submission_type=submission_type,
            description=description,
            category=category,
            status=status,
            image_urls_json=json.dumps(list(image_urls)) if image_urls is not None else None,
            detected_objects_json=json.dumps(list(detected_objects)) if detected_objects is not None else None,
            image_embedding_json=json.dumps([float(v) for v in image_embedding]) if image_embedding is not None else None,
            **fields,
        )
        self.session.add(row)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return row

    def get(self, item_id: str) -> Item:
        row = self.session.get(Item, item_id)
        if row is None:
            raise NotFoundError("item", item_id)
        return row

    def find(self, item_id: str) -> Optional[Item]:
        return self.session.get(Item, item_id)

    def candidates_for(self, item: Item, limit: int, same_category_only: bool = False) -> List[Item]:
        """Opposite-type items still open for matching, newest first."""
        stmt = (
            select(Item)
            .where(
                Item.submission_type == opposite_type(item.submission_type),
                Item.status.in_(CANDIDATE_STATUSES),
                Item.item_id != item.item_id,
            )
            .order_by(Item.reported_at.desc(), Item.item_id)
            .limit(limit)
        )
        if same_category_only and item.category:
            stmt = stmt.where(Item.category == item.category)
        return list(self.session.execute(stmt).scalars())

    def corpus_descriptions(self) -> List[str]:
        rows = self.session.execute(
            select(Item.description).where(Item.status.in_(CORPUS_STATUSES))
        ).scalars()
        return [d for d in rows if d and d.strip()]

    def unchecked(self, limit: int) -> List[Item]:
        return list(
            self.session.execute(
                select(Item)
                .where(Item.status == "submitted", Item.similarity_checked.is_(False))
                .order_by(Item.reported_at, Item.item_id)
                .limit(limit)
            ).scalars()
        )

    def lost_item_ids_of(self, submitter_id: str) -> List[str]:
        return list(
            self.session.execute(
                select(Item.item_id).where(
                    Item.submitter_id == submitter_id,
                    Item.submission_type == "lost",
                )
            ).scalars()
        )

    def set_status(self, item: Item, status: str) -> Item:
        """
        Change an item's lifecycle status (caller commits).

        Archived items are immutable.
        """
        if status not in ITEM_STATUSES:
            raise ValidationError(f"unknown item status: {status!r}")
        if item.status == "archived" and status != "archived":
            raise ValidationError(f"item {item.item_id} is archived and cannot change status")
        item.status = status
        return item

    def mark_checked(self, item: Item) -> None:
        item.similarity_checked = True
