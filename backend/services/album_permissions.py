"""
Album permission resolution.

This service is the single authority for album-level allow/deny decisions.
``resolve`` walks an ordered chain of resolution steps and returns a
structured decision; ``assert_permission`` turns a deny into an exception;
``resolve_access`` builds an immutable capability context for request
handlers from the same role table and bypass rules.

Resolution order (first step that produces an outcome wins):

    1. album_exists      album missing or soft-deleted -> NotFoundError
    2. system_operator   platform operator role -> allow
    3. album_owner       subject owns the album -> allow
    4. public_view       album:view on a public album -> allow
    5. authentication    anonymous subject -> deny
    6. membership        no membership row -> deny
    7. override          explicit per-member grant/deny for the action
    8. role              static role -> actions table
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ForbiddenError, NotFoundError
from core.permissions import (
    ROLE_PERMISSIONS,
    AlbumAction,
    AlbumRole,
    effective_actions,
    is_system_operator,
    parse_action,
    role_allows,
)
from infrastructure.config.settings import settings
from infrastructure.database.models import Album, AlbumMember

logger = logging.getLogger(__name__)


# ============================================================================
# Resolution steps
# ============================================================================


@dataclass(frozen=True)
class ResolutionFacts:
    """Everything a resolution step may look at."""

    album: Optional[Album]
    subject_id: Optional[str]
    action: AlbumAction
    system_role: Optional[str] = None
    operator_roles: frozenset[str] = frozenset()
    membership: Optional[AlbumMember] = None


@dataclass(frozen=True)
class StepOutcome:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class ResolutionStep:
    """
    One link of the resolution chain.

    ``evaluate`` returns None to pass control to the next step. Steps with
    ``requires_membership`` only run after the subject's membership (and its
    overrides) has been loaded into the facts.
    """

    name: str
    evaluate: Callable[[ResolutionFacts], Optional[StepOutcome]]
    requires_membership: bool = False


def _album_exists(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if facts.album is None or facts.album.deleted_at is not None:
        raise NotFoundError("Album")
    return None


def _system_operator(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if is_system_operator(facts.system_role, facts.operator_roles):
        return StepOutcome(True, "System operator")
    return None


def _album_owner(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if facts.subject_id is not None and facts.subject_id == facts.album.owner_id:
        return StepOutcome(True, "Album owner")
    return None


def _public_view(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if facts.action == AlbumAction.ALBUM_VIEW and facts.album.is_public:
        return StepOutcome(True, "Public album")
    return None


def _authentication(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if facts.subject_id is None:
        return StepOutcome(False, "Authentication required")
    return None


def _membership(facts: ResolutionFacts) -> Optional[StepOutcome]:
    if facts.membership is None:
        return StepOutcome(False, "Not a member of this album")
    return None


def _override(facts: ResolutionFacts) -> Optional[StepOutcome]:
    granted = facts.membership.overrides_by_action.get(facts.action.value)
    if granted is None:
        return None
    if granted:
        return StepOutcome(True, f"Explicitly granted {facts.action.value}")
    return StepOutcome(False, f"Explicitly denied {facts.action.value}")


def _role(facts: ResolutionFacts) -> Optional[StepOutcome]:
    role = facts.membership.role
    if role_allows(role, facts.action):
        return StepOutcome(True, f"Role {role} allows {facts.action.value}")
    return StepOutcome(False, f"Role {role} does not allow {facts.action.value}")


RESOLUTION_STEPS: tuple[ResolutionStep, ...] = (
    ResolutionStep("album_exists", _album_exists),
    ResolutionStep("system_operator", _system_operator),
    ResolutionStep("album_owner", _album_owner),
    ResolutionStep("public_view", _public_view),
    ResolutionStep("authentication", _authentication),
    ResolutionStep("membership", _membership, requires_membership=True),
    ResolutionStep("override", _override, requires_membership=True),
    ResolutionStep("role", _role, requires_membership=True),
)


@dataclass(frozen=True)
class PermissionDecision:
    """Result of a permission resolution."""

    allowed: bool
    reason: str
    step: str
    album: Optional[Album] = None
    membership: Optional[AlbumMember] = None

    @property
    def acting_role(self) -> Optional[str]:
        """Rank the decision's subject acts with (owner rank for bypasses)."""
        if self.allowed and self.step in _OWNER_RANK_STEPS:
            return AlbumRole.OWNER.value
        if self.membership is not None:
            return self.membership.role
        return None


_OWNER_RANK_STEPS = frozenset({"system_operator", "album_owner"})

MembershipLoader = Callable[[str, str], Awaitable[Optional[AlbumMember]]]


async def run_resolution(
    facts: ResolutionFacts,
    load_membership: MembershipLoader,
    steps: Iterable[ResolutionStep] = RESOLUTION_STEPS,
) -> PermissionDecision:
    """
    Walk the resolution chain and return the first outcome.

    ``load_membership(album_id, subject_id)`` is awaited at most once, right
    before the first step that needs it.
    """
    membership_loaded = facts.membership is not None
    for step in steps:
        if step.requires_membership and not membership_loaded:
            membership = await load_membership(facts.album.id, facts.subject_id)
            facts = replace(facts, membership=membership)
            membership_loaded = True

        outcome = step.evaluate(facts)
        if outcome is not None:
            return PermissionDecision(
                allowed=outcome.allowed,
                reason=outcome.reason,
                step=step.name,
                album=facts.album,
                membership=facts.membership,
            )

    return PermissionDecision(
        allowed=False,
        reason="No rule matched",
        step="none",
        album=facts.album,
        membership=facts.membership,
    )


# ============================================================================
# Access context
# ============================================================================


@dataclass(frozen=True)
class AlbumAccessContext:
    """Immutable view of what a subject may do in an album."""

    album: Album
    membership: Optional[AlbumMember]
    effective_role: Optional[AlbumRole]
    is_owner: bool
    is_system_operator: bool
    is_public_viewer: bool
    actions: frozenset[AlbumAction]

    def can(self, action: AlbumAction | str) -> bool:
        return parse_action(action) in self.actions

    @property
    def can_edit(self) -> bool:
        return AlbumAction.ALBUM_EDIT in self.actions

    @property
    def can_delete(self) -> bool:
        return AlbumAction.ALBUM_DELETE in self.actions

    @property
    def can_manage_members(self) -> bool:
        return AlbumAction.MEMBER_ADD in self.actions

    @property
    def can_upload_photo(self) -> bool:
        return AlbumAction.PHOTO_UPLOAD in self.actions

    @property
    def can_comment(self) -> bool:
        return AlbumAction.COMMENT_CREATE in self.actions


def requester_role(context: AlbumAccessContext) -> Optional[str]:
    """Rank a requester for the role-change guard.

    Album owners and system operators act with owner rank.
    """
    if context.is_owner or context.is_system_operator:
        return AlbumRole.OWNER.value
    if context.membership is not None:
        return context.membership.role
    return None


# ============================================================================
# Service
# ============================================================================


class AlbumPermissionService:
    """Resolves album permissions for a subject."""

    def __init__(self, db: AsyncSession, operator_roles: Optional[Iterable[str]] = None):
        self.db = db
        self.operator_roles = frozenset(
            operator_roles if operator_roles is not None else settings.system_operator_role_set
        )

    async def _get_album(self, album_id: str) -> Optional[Album]:
        result = await self.db.execute(select(Album).where(Album.id == album_id))
        return result.scalar_one_or_none()

    async def get_membership(self, album_id: str, user_id: str) -> Optional[AlbumMember]:
        """Load a membership together with its overrides."""
        result = await self.db.execute(
            select(AlbumMember).where(
                AlbumMember.album_id == album_id,
                AlbumMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def resolve(
        self,
        album_id: str,
        subject_id: Optional[str],
        action: AlbumAction | str,
        system_role: Optional[str] = None,
    ) -> PermissionDecision:
        """
        Decide whether a subject may perform an action on an album.

        Read-only. Returns a decision instead of raising on deny.

        Raises:
            ValidationError: Unknown action name
            NotFoundError: Album does not exist or is soft-deleted
        """
        parsed = parse_action(action)
        album = await self._get_album(album_id)
        facts = ResolutionFacts(
            album=album,
            subject_id=subject_id,
            action=parsed,
            system_role=system_role,
            operator_roles=self.operator_roles,
        )

        decision = await run_resolution(facts, self.get_membership)

        logger.debug(
            "Permission %s: %s",
            "allowed" if decision.allowed else "denied",
            decision.reason,
            extra={
                "album_id": album_id,
                "user_id": subject_id,
                "action": parsed.value,
                "step": decision.step,
            },
        )
        return decision

    async def assert_permission(
        self,
        album_id: str,
        subject_id: Optional[str],
        action: AlbumAction | str,
        system_role: Optional[str] = None,
    ) -> PermissionDecision:
        """
        Resolve and raise on deny.

        Raises:
            ForbiddenError: Permission denied (details carry the reason)
            NotFoundError: Album does not exist or is soft-deleted
        """
        decision = await self.resolve(album_id, subject_id, action, system_role)
        if not decision.allowed:
            raise ForbiddenError(
                decision.reason,
                details={"action": parse_action(action).value, "step": decision.step},
            )
        return decision

    async def resolve_access(
        self,
        album_id: str,
        subject_id: Optional[str],
        system_role: Optional[str] = None,
    ) -> AlbumAccessContext:
        """
        Build the access context for a subject in one round trip.

        Raises:
            NotFoundError: Album does not exist or is soft-deleted
            ForbiddenError: Subject may not view the album
        """
        if subject_id is not None:
            stmt = (
                select(Album, AlbumMember)
                .outerjoin(
                    AlbumMember,
                    and_(
                        AlbumMember.album_id == Album.id,
                        AlbumMember.user_id == subject_id,
                    ),
                )
                .where(Album.id == album_id)
            )
            row = (await self.db.execute(stmt)).first()
            album, membership = (row[0], row[1]) if row else (None, None)
        else:
            album, membership = await self._get_album(album_id), None

        if album is None or not album.is_active:
            raise NotFoundError("Album")

        operator = is_system_operator(system_role, self.operator_roles)
        owner = subject_id is not None and subject_id == album.owner_id

        if operator or owner:
            return AlbumAccessContext(
                album=album,
                membership=membership,
                effective_role=AlbumRole.OWNER,
                is_owner=owner,
                is_system_operator=operator,
                is_public_viewer=False,
                actions=ROLE_PERMISSIONS[AlbumRole.OWNER],
            )

        if membership is None:
            if album.is_public:
                return AlbumAccessContext(
                    album=album,
                    membership=None,
                    effective_role=None,
                    is_owner=False,
                    is_system_operator=False,
                    is_public_viewer=True,
                    actions=frozenset({AlbumAction.ALBUM_VIEW}),
                )
            if subject_id is None:
                raise ForbiddenError("Authentication required")
            raise ForbiddenError("Not a member of this album")

        actions = effective_actions(membership.role, membership.overrides_by_action)
        if album.is_public:
            actions = actions | {AlbumAction.ALBUM_VIEW}
        elif AlbumAction.ALBUM_VIEW not in actions:
            raise ForbiddenError(f"Explicitly denied {AlbumAction.ALBUM_VIEW.value}")

        return AlbumAccessContext(
            album=album,
            membership=membership,
            effective_role=AlbumRole(membership.role),
            is_owner=False,
            is_system_operator=False,
            is_public_viewer=False,
            actions=frozenset(actions),
        )
