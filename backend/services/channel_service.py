# backend/services/channel_service.py
"""Read-only social graph and watch-history queries.

Each query is assembled stage by stage (match, join, derive, project) and
run once through ``UserStore.aggregate``. Later stages read columns produced
by earlier ones, so the order of the builders below matters. Nothing is
cached; results are recomputed on every call.
"""
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import CTE, Select, Subquery, case, false, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from errors import NotFound, ValidationError
from models import ChannelProfile, OwnerSummary, Subscription, User, Video, WatchHistoryEntry, WatchHistoryItem
from userstore import UserStore

logger = logging.getLogger(__name__)


# --- channel profile stages ---
def _match_channel(username: str) -> CTE:
    return select(User).where(User.username == username).cte("channel")


def _lookup_subscribers(channel: CTE, viewer_id: Optional[int]) -> Subquery:
    """Edges where the channel is subscribed to; counts them and checks for the viewer."""
    if viewer_id is None:
        viewer_edge = false()
    else:
        viewer_edge = Subscription.subscriber_id == viewer_id
    return (
        select(
            channel.c.id.label("user_id"),
            func.count(Subscription.id).label("subscribers_count"),
            func.coalesce(func.max(case((viewer_edge, 1), else_=0)), 0).label("viewer_edges"),
        )
        .select_from(channel)
        .outerjoin(Subscription, Subscription.channel_id == channel.c.id)
        .group_by(channel.c.id)
        .subquery("subscribers")
    )


def _lookup_subscribed_to(channel: CTE) -> Subquery:
    """Edges where the channel is the subscriber."""
    return (
        select(
            channel.c.id.label("user_id"),
            func.count(Subscription.id).label("channels_subscribed_to_count"),
        )
        .select_from(channel)
        .outerjoin(Subscription, Subscription.subscriber_id == channel.c.id)
        .group_by(channel.c.id)
        .subquery("subscribed_to")
    )


def _project_channel(channel: CTE, subscribers: Subquery, subscribed_to: Subquery) -> Select:
    return (
        select(
            channel.c.id,
            channel.c.full_name,
            channel.c.username,
            subscribers.c.subscribers_count,
            subscribed_to.c.channels_subscribed_to_count,
            (subscribers.c.viewer_edges > 0).label("is_subscribed"),
            channel.c.avatar,
            channel.c.cover_image,
            channel.c.email,
        )
        .select_from(channel)
        .join(subscribers, subscribers.c.user_id == channel.c.id)
        .join(subscribed_to, subscribed_to.c.user_id == channel.c.id)
    )


def channel_profile_query(username: str, viewer_id: Optional[int]) -> Select:
    channel = _match_channel(username)
    return _project_channel(channel, _lookup_subscribers(channel, viewer_id), _lookup_subscribed_to(channel))


async def get_channel_profile(session: AsyncSession, username: Optional[str], viewer_id: Optional[int]) -> ChannelProfile:
    if not username or not username.strip():
        raise ValidationError("username is missing")

    rows = await UserStore(session).aggregate(channel_profile_query(username.strip().lower(), viewer_id))
    if not rows:
        raise NotFound("channel does not exist")
    return ChannelProfile.model_validate(dict(rows[0]))


# --- watch history stages ---
OWNER_FIELDS = ("full_name", "username", "avatar")


def _project_owner() -> Subquery:
    return select(User.id.label("owner_ref"), User.full_name, User.username, User.avatar).subquery("owner")


def watch_history_query(user_id: int) -> Select:
    viewer = select(User.id).where(User.id == user_id).cte("viewer")
    owner = _project_owner()
    return (
        select(
            Video.id,
            Video.title,
            Video.description,
            Video.thumbnail,
            Video.video_file,
            Video.duration,
            Video.views,
            Video.is_published,
            Video.created_at,
            owner.c.owner_ref,
            *(owner.c[field].label(f"owner_{field}") for field in OWNER_FIELDS),
        )
        .select_from(viewer)
        .join(WatchHistoryEntry, WatchHistoryEntry.user_id == viewer.c.id)
        .join(Video, Video.id == WatchHistoryEntry.video_id)
        .outerjoin(owner, owner.c.owner_ref == Video.owner_id)
        .order_by(WatchHistoryEntry.position, WatchHistoryEntry.id)
    )


def _collapse_owner(row: Mapping[str, Any]) -> dict:
    """Fold the owner join into a single ``owner`` value (``None`` when the owner is gone)."""
    item = {key: value for key, value in row.items() if key != "owner_ref" and not key.startswith("owner_")}
    if row["owner_ref"] is None:
        item["owner"] = None
    else:
        item["owner"] = OwnerSummary(**{field: row[f"owner_{field}"] for field in OWNER_FIELDS})
    return item


async def get_watch_history(session: AsyncSession, user_id: int) -> list[WatchHistoryItem]:
    rows = await UserStore(session).aggregate(watch_history_query(user_id))
    logger.debug("Watch history for user %s: %d entries", user_id, len(rows))
    return [WatchHistoryItem.model_validate(_collapse_owner(row)) for row in rows]
