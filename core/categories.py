"""
Category tree materialization.

Pure transformations over flat category rows (tree, breadcrumbs,
descendant closure) plus the CategoryService that feeds them from the
store. Cycles in parent links are detected and reported, never followed.
"""

import logging
from collections import defaultdict, deque
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from core.errors import Conflict, CycleDetected, NotFound, ValidationError
from core.rbac.visibility import visibility_filter
from core.types import Book, Breadcrumb, Caller, Category, CategoryNode

logger = logging.getLogger(__name__)

CategoryFetcher = Callable[[int], Optional[Category]]


# ============================================================================
# Tree Functions
# ============================================================================

def _children_index(categories: Iterable[Category]) -> Dict[Optional[int], List[Category]]:
    children: Dict[Optional[int], List[Category]] = defaultdict(list)
    for category in categories:
        children[category.parent_id].append(category)
    return children


def build_tree(categories: List[Category]) -> List[CategoryNode]:
    """
    Nest a flat category list under its roots.

    Categories whose parent is missing from the input are skipped with a
    warning. Input order is kept among siblings.

    Args:
        categories: Every category row

    Returns:
        Root nodes with their children attached

    Raises:
        CycleDetected: A category is its own parent, or a group of
            categories only reaches each other through parent links

    Examples:
        >>> rows = [Category(1, "Fiction"), Category(2, "Sci-Fi", parent_id=1)]
        >>> [child.name for child in build_tree(rows)[0].children]
        ['Sci-Fi']
    """
    by_id = {c.id: c for c in categories}
    children = _children_index(categories)

    for category in categories:
        if category.parent_id == category.id:
            raise CycleDetected(category.id)

    visited: Set[int] = set()

    def node_for(category: Category) -> CategoryNode:
        if category.id in visited:
            raise CycleDetected(category.id)
        visited.add(category.id)
        return CategoryNode(
            id=category.id,
            name=category.name,
            slug=category.slug,
            description=category.description,
            children=[],
        )

    tree = [node_for(root) for root in children.get(None, [])]

    # Breadth-first with an explicit queue; chain depth is unbounded
    pending = deque(zip(children.get(None, []), tree))
    while pending:
        category, node = pending.popleft()
        for child in children.get(category.id, []):
            child_node = node_for(child)
            node.children.append(child_node)
            pending.append((child, child_node))

    for category in categories:
        if category.id in visited:
            continue
        # Unreachable: either hangs off a missing parent or sits on a loop
        seen = {category.id}
        current = category
        while current.parent_id in by_id:
            if current.parent_id in seen:
                raise CycleDetected(current.parent_id)
            seen.add(current.parent_id)
            current = by_id[current.parent_id]
        logger.warning(
            f"Category {category.id} skipped: ancestor {current.id} "
            f"references missing parent {current.parent_id}"
        )

    return tree


def breadcrumbs(leaf_id: int, fetch_by_id: CategoryFetcher) -> List[Breadcrumb]:
    """
    Resolve the ancestor chain of a category, root first.

    Args:
        leaf_id: Category to start from
        fetch_by_id: Looks up one category (None when absent)

    Returns:
        Breadcrumbs ordered root to leaf

    Raises:
        NotFound: Any id in the chain does not resolve
        CycleDetected: The walk revisits a category
    """
    chain: List[Breadcrumb] = []
    seen: Set[int] = set()
    current_id: Optional[int] = leaf_id

    while current_id is not None:
        if current_id in seen:
            raise CycleDetected(current_id)
        seen.add(current_id)

        category = fetch_by_id(current_id)
        if category is None:
            raise NotFound(f"category {current_id} not found")

        chain.insert(0, Breadcrumb(id=category.id, name=category.name, slug=category.slug or ""))
        current_id = category.parent_id

    return chain


def descendant_ids(category_id: int, categories: Iterable[Category]) -> List[int]:
    """
    Transitive closure of child links from category_id, inclusive.

    Breadth-first over a preloaded adjacency list, so the depth of the
    tree never costs extra queries.

    Raises:
        CycleDetected: A category is reached twice

    Examples:
        >>> rows = [Category(1, "a"), Category(2, "b", 1), Category(3, "c", 2)]
        >>> descendant_ids(1, rows)
        [1, 2, 3]
    """
    children = _children_index(categories)

    order: List[int] = []
    seen: Set[int] = set()
    queue = deque([category_id])

    while queue:
        current = queue.popleft()
        if current in seen:
            raise CycleDetected(current)
        seen.add(current)
        order.append(current)
        queue.extend(child.id for child in children.get(current, []))

    return order


def _clean_slug(slug: Optional[str]) -> Optional[str]:
    """Blank slugs are stored as absent."""
    if slug is None:
        return None
    return slug.strip() or None


# ============================================================================
# Service
# ============================================================================

class CategoryService:
    """Category reads, descendant aggregation and catalog management."""

    def __init__(self, adapter, refine_lists: bool = False):
        self.adapter = adapter
        self.refine_lists = refine_lists

    def tree(self) -> List[CategoryNode]:
        return build_tree(self.adapter.list_categories())

    def roots(self) -> List[Category]:
        return self.adapter.list_child_categories(None)

    def get(self, category_id: int) -> Category:
        category = self.adapter.get_category(category_id)
        if category is None:
            raise NotFound(f"category {category_id} not found")
        return category

    def children(self, category_id: int) -> List[Category]:
        self.get(category_id)
        return self.adapter.list_child_categories(category_id)

    def breadcrumbs(self, category_id: int) -> List[Breadcrumb]:
        return breadcrumbs(category_id, self.adapter.get_category)

    def descendant_books(
        self,
        category_id: int,
        caller: Caller,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Book]:
        """
        Books attached to a category or any of its descendants.

        One query loads the categories, one set-membership query loads the
        books. Results are distinct and pass the caller's visibility filter.
        """
        self.get(category_id)
        ids = descendant_ids(category_id, self.adapter.list_categories())
        vf = visibility_filter(caller, refine_restricted=self.refine_lists)
        books = self.adapter.books_in_categories(ids, vf, limit=limit, offset=offset)
        logger.debug(f"Category {category_id}: {len(ids)} categories, {len(books)} books")
        return books

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        parent_id: Optional[int] = None,
        slug: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Category:
        if not name or not name.strip():
            raise ValidationError("category name is required")
        if parent_id is not None and self.adapter.get_category(parent_id) is None:
            raise ValidationError(f"parent category {parent_id} not found")
        slug = _clean_slug(slug)
        self._check_slug_free(slug)

        category = self.adapter.create_category(
            name=name.strip(), parent_id=parent_id, slug=slug, description=description,
        )
        logger.info(f"Created category {category.id} (parent={parent_id})")
        return category

    def update(self, category_id: int, changes: Dict[str, Any]) -> Category:
        """
        Apply a partial update.

        Moving a category under itself or one of its descendants is
        rejected, so the tree stays acyclic.
        """
        current = self.get(category_id)

        if "name" in changes and (not changes["name"] or not changes["name"].strip()):
            raise ValidationError("category name is required")

        if changes.get("parent_id") is not None:
            parent_id = changes["parent_id"]
            if parent_id == category_id:
                raise ValidationError("category cannot be its own parent")
            if self.adapter.get_category(parent_id) is None:
                raise ValidationError(f"parent category {parent_id} not found")
            if parent_id in descendant_ids(category_id, self.adapter.list_categories()):
                raise ValidationError("category cannot be moved under its own descendant")

        if "slug" in changes:
            changes = {**changes, "slug": _clean_slug(changes["slug"])}
        if changes.get("slug") and changes["slug"] != current.slug:
            self._check_slug_free(changes["slug"])

        return self.adapter.update_category(category_id, changes)

    def delete(self, category_id: int) -> None:
        self.get(category_id)
        self.adapter.delete_category(category_id)
        logger.info(f"Deleted category {category_id} and its subtree")

    def _check_slug_free(self, slug: Optional[str]) -> None:
        if slug and self.adapter.get_category_by_slug(slug) is not None:
            raise Conflict(f"slug {slug!r} already in use")
