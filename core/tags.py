"""
Tags and the per-book tag weight merge.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from core.errors import Conflict, NotFound, ValidationError
from core.types import DEFAULT_TAG_WEIGHT, BookTag, Tag, WeightedTag

logger = logging.getLogger(__name__)


def merge_tags_with_weight(
    catalog_tags: Iterable[Tag],
    book_tag_links: Iterable[BookTag],
) -> List[WeightedTag]:
    """
    Join a book's tag links with the tag catalog.

    Only linked tags appear in the result. A link without a weight counts
    as DEFAULT_TAG_WEIGHT. Sorted by weight descending, then tag id
    ascending so equal weights come back in a stable order.

    Args:
        catalog_tags: Tag definitions (name, color)
        book_tag_links: The book's link rows

    Returns:
        Weighted tags for the book

    Examples:
        >>> catalog = [Tag(1, "sf"), Tag(2, "noir"), Tag(3, "short")]
        >>> links = [BookTag(9, 2, 5), BookTag(9, 1, None)]
        >>> [(t.name, t.weight) for t in merge_tags_with_weight(catalog, links)]
        [('noir', 5), ('sf', 1)]
    """
    catalog = {tag.id: tag for tag in catalog_tags}

    merged = []
    for link in book_tag_links:
        tag = catalog.get(link.tag_id)
        if tag is None:
            logger.warning(f"Book {link.book_id} linked to unknown tag {link.tag_id}")
            continue
        weight = DEFAULT_TAG_WEIGHT if link.weight is None else link.weight
        merged.append(WeightedTag(id=tag.id, name=tag.name, color=tag.color, weight=weight))

    merged.sort(key=lambda t: (-t.weight, t.id))
    return merged


class TagService:
    """Tag catalog management."""

    def __init__(self, adapter):
        self.adapter = adapter

    def list(self, query: Optional[str] = None) -> List[Tag]:
        return self.adapter.list_tags(query=query)

    def get(self, tag_id: int) -> Tag:
        tag = self.adapter.get_tag(tag_id)
        if tag is None:
            raise NotFound(f"tag {tag_id} not found")
        return tag

    def create(self, name: str, color: str = "") -> Tag:
        name = (name or "").strip()
        if not name:
            raise ValidationError("tag name is required")
        if self.adapter.get_tag_by_name(name) is not None:
            raise Conflict(f"tag {name!r} already exists")
        return self.adapter.create_tag(name=name, color=color or "")

    def update(self, tag_id: int, changes: Dict[str, Any]) -> Tag:
        current = self.get(tag_id)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("tag name is required")
            if name != current.name and self.adapter.get_tag_by_name(name) is not None:
                raise Conflict(f"tag {name!r} already exists")
            changes = {**changes, "name": name}
        return self.adapter.update_tag(tag_id, changes)

    def delete(self, tag_id: int) -> None:
        self.get(tag_id)
        self.adapter.delete_tag(tag_id)
