"""
Status visibility policy for books and comments.

Maps a caller's role to the content statuses it may see and applies the
private/quarantine refinement: a restricted book is only shown to its
creator or to an admin, even when its status is in the caller's allowed set.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from core.types import (
    ALL_COMMENT_STATUSES,
    ALL_CONTENT_STATUSES,
    Caller,
    CommentStatus,
    ContentStatus,
)
from .roles import Role, is_admin, normalize_role


# ============================================================================
# Status Tiers
# ============================================================================

ADMIN_STATUSES: FrozenSet[ContentStatus] = frozenset(ALL_CONTENT_STATUSES)

USER_STATUSES: FrozenSet[ContentStatus] = frozenset({
    ContentStatus.VISIBLE,
    ContentStatus.QUARANTINE,
})

NEW_USER_STATUSES: FrozenSet[ContentStatus] = frozenset()

PUBLIC_STATUSES: FrozenSet[ContentStatus] = frozenset({ContentStatus.VISIBLE})

# Statuses that stay creator-or-admin even when the role may see them
RESTRICTED_STATUSES: FrozenSet[ContentStatus] = frozenset({
    ContentStatus.PRIVATE,
    ContentStatus.QUARANTINE,
})

PUBLIC_COMMENT_STATUSES: FrozenSet[CommentStatus] = frozenset({CommentStatus.ACTIVE})


# ============================================================================
# Policy Functions
# ============================================================================

def viewable_statuses(role) -> FrozenSet[ContentStatus]:
    """
    Get the book statuses a role may see.

    Tiers are checked most-specific first. Unknown roles fall through to
    the public tier. The empty set is a valid answer and must yield zero
    rows downstream.

    Args:
        role: Role member or role name

    Returns:
        Frozen set of ContentStatus values (never None)

    Examples:
        >>> sorted(s.value for s in viewable_statuses("user"))
        ['quarantine', 'visible']
        >>> viewable_statuses("new-user")
        frozenset()
        >>> sorted(s.value for s in viewable_statuses("librarian"))
        ['visible']
    """
    normalized = normalize_role(role)

    if is_admin(normalized):
        return ADMIN_STATUSES
    if normalized == Role.USER:
        return USER_STATUSES
    if normalized == Role.NEW_USER:
        return NEW_USER_STATUSES
    return PUBLIC_STATUSES


def passes_restriction(status: ContentStatus, created_by: Optional[int], caller: Caller) -> bool:
    """
    Apply the private/quarantine refinement to a single book.

    Unrestricted statuses always pass; restricted ones pass for the creator
    or an admin-class caller.
    """
    if ContentStatus(status) not in RESTRICTED_STATUSES:
        return True
    if is_admin(caller.role):
        return True
    return caller.user_id is not None and created_by == caller.user_id


# ============================================================================
# Query Filters
# ============================================================================

@dataclass(frozen=True)
class VisibilityFilter:
    """
    Row filter handed to the store for book listings.

    A row matches when its status is in `statuses` and, if its status is in
    `owner_only_statuses`, its creator is `owner_id`.
    """
    statuses: FrozenSet[ContentStatus]
    owner_only_statuses: FrozenSet[ContentStatus] = frozenset()
    owner_id: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.statuses


def visibility_filter(caller: Caller, refine_restricted: bool = False) -> VisibilityFilter:
    """
    Build the store filter for a caller.

    Args:
        caller: Requesting caller
        refine_restricted: Also apply the private/quarantine refinement per
            row. Without it a `user` sees every quarantined book in lists.

    Returns:
        VisibilityFilter
    """
    statuses = viewable_statuses(caller.role)

    if not refine_restricted or is_admin(caller.role):
        return VisibilityFilter(statuses=statuses)

    return VisibilityFilter(
        statuses=statuses,
        owner_only_statuses=RESTRICTED_STATUSES & statuses,
        owner_id=caller.user_id,
    )


# ============================================================================
# Comments
# ============================================================================

def viewable_comment_statuses(
    role,
    requested: Optional[Iterable[CommentStatus]] = None,
) -> FrozenSet[CommentStatus]:
    """
    Get the comment statuses a caller may list.

    Admin-class callers get whatever they asked for (all statuses when
    nothing was requested). Everyone else only sees active comments and
    any request for other statuses is ignored.
    """
    if is_admin(role):
        if requested:
            return frozenset(CommentStatus(s) for s in requested)
        return frozenset(ALL_COMMENT_STATUSES)
    return PUBLIC_COMMENT_STATUSES
