"""Media group reconciliation.

Telegram delivers an album as one update per item.  The reconciler
correlates them by ``media_group_id``, agrees on one canonical caption and
``ProductInfo`` per group ("most complete wins", first arrival wins between
conflicting captions), copies that value onto every member's record and
schedules one ``MediaTask`` per file.

A group stays OPEN while members keep arriving.  ``settle_due_groups`` runs
periodically: groups quiet for longer than the window are claimed
(OPEN -> SETTLING by compare-and-swap, so only one sweeper wins), get a
final reconciliation pass, and become COMPLETE.  COMPLETE groups are locked
and eventually garbage collected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from mediasync.core.exceptions import CaptionAnalysisError
from mediasync.db.repository import MediaRepository
from mediasync.models.enums import TERMINAL_STATES, GroupState
from mediasync.models.group import MediaGroup
from mediasync.models.media import MediaRecord, MediaTask
from mediasync.models.post import IncomingPost
from mediasync.models.product import ProductInfo, choose_canonical
from mediasync.services.canonical import apply_canonical
from mediasync.services.caption import CaptionAnalyzer

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GroupReconciler:
    """Turns single-message arrivals into group-level decisions."""

    def __init__(
        self,
        repository: MediaRepository,
        analyzer: CaptionAnalyzer,
        *,
        quiet_window: timedelta = timedelta(seconds=10),
        max_group_size: int = 10,
        settle_timeout: timedelta = timedelta(minutes=5),
        retention: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._analyzer = analyzer
        self._quiet_window = quiet_window
        self._max_group_size = max_group_size
        self._settle_timeout = settle_timeout
        self._retention = retention
        self._clock = clock

    # ------------------------------------------------------------------
    # Arrivals
    # ------------------------------------------------------------------

    def on_post(self, post: IncomingPost) -> list[MediaTask]:
        """Absorb one post and return the media tasks it schedules."""
        product_info = self._analyze(post)

        if post.group_id is None:
            task = self._schedule(post, post.caption, product_info)
            return [task] if task else []

        now = self._clock()
        observed: dict[str, Any] = {}

        def absorb(current: MediaGroup | None) -> MediaGroup:
            observed["before"] = current
            return self._absorb(current, post, product_info, now)

        group = self._repository.update_group(post.group_id, absorb)
        before: MediaGroup | None = observed.get("before")

        if before is not None and before.is_locked and post.external_message_id not in before.members:
            logger.warning(
                "media_group_late_member",
                extra={
                    "group_id": group.group_id,
                    "message_id": post.external_message_id,
                },
            )
        if group.has_conflict and not (before and before.has_conflict):
            logger.warning(
                "media_group_caption_conflict",
                extra={
                    "group_id": group.group_id,
                    "kept_caption": group.canonical_caption,
                    "ignored_caption": post.caption,
                },
            )

        task = self._schedule(post, group.canonical_caption, group.canonical_product_info)

        canonical_changed = before is None or (
            before.canonical_caption,
            before.canonical_product_info,
        ) != (group.canonical_caption, group.canonical_product_info)
        if canonical_changed:
            self._back_propagate(group)

        reached_max = group.state == GroupState.settling and (
            before is None or before.state == GroupState.open
        )
        if reached_max:
            logger.info(
                "media_group_full",
                extra={"group_id": group.group_id, "members": len(group.members)},
            )
            self._complete(group.group_id, now)

        return [task] if task else []

    def _analyze(self, post: IncomingPost) -> ProductInfo | None:
        if not post.caption:
            return None
        try:
            return self._analyzer.analyze(post.caption)
        except CaptionAnalysisError as exc:
            logger.warning(
                "caption_analysis_failed",
                extra={
                    "message_id": post.external_message_id,
                    "group_id": post.group_id,
                    "error_message": str(exc),
                },
            )
            return None

    def _absorb(
        self,
        current: MediaGroup | None,
        post: IncomingPost,
        product_info: ProductInfo | None,
        now: datetime,
    ) -> MediaGroup:
        """Append the member and fold its caption into the canonical fields.

        Pure: may be re-run by a compare-and-swap retry.
        """
        if current is None:
            current = MediaGroup(group_id=post.group_id, last_seen_at=now)

        members = list(current.members)
        if post.external_message_id not in members:
            members.append(post.external_message_id)

        if current.is_locked:
            return current.model_copy(update={"members": members})

        caption, info, conflict = choose_canonical(
            current.canonical_caption,
            current.canonical_product_info,
            post.caption,
            product_info,
        )

        state = current.state
        settling_since = current.settling_since
        if state == GroupState.open and len(members) >= self._max_group_size:
            state = GroupState.settling
            settling_since = now

        return current.model_copy(
            update={
                "members": members,
                "canonical_caption": caption,
                "canonical_product_info": info,
                "has_conflict": current.has_conflict or conflict,
                "last_seen_at": max(current.last_seen_at, now),
                "state": state,
                "settling_since": settling_since,
            }
        )

    def _schedule(
        self,
        post: IncomingPost,
        caption: str | None,
        product_info: ProductInfo | None,
    ) -> MediaTask | None:
        """Create the PENDING record for the post's media and return its task."""
        if post.media_ref is None:
            return None
        task = MediaTask(
            media_ref=post.media_ref,
            chat_id=post.chat_id,
            source_message_id=post.external_message_id,
            group_id=post.group_id,
            caption=caption,
            product_info=product_info,
        )
        record, created = self._repository.get_or_create_record(
            MediaRecord.pending_from_task(task, self._clock())
        )
        if not created:
            logger.info(
                "media_record_exists",
                extra={
                    "file_unique_ref": record.file_unique_ref,
                    "state": record.processing_state.value,
                    "message_id": post.external_message_id,
                },
            )
        return task

    def _back_propagate(self, group: MediaGroup) -> int:
        """Copy the group's canonical fields onto every member record."""
        changed = 0
        for record in self._repository.list_records(group_id=group.group_id):
            updated = apply_canonical(
                self._repository,
                record,
                group.canonical_caption,
                group.canonical_product_info,
            )
            if updated is not record:
                changed += 1
        if changed:
            logger.info(
                "media_group_back_propagated",
                extra={"group_id": group.group_id, "records_updated": changed},
            )
        return changed

    # ------------------------------------------------------------------
    # Quiet-window sweep
    # ------------------------------------------------------------------

    def settle_due_groups(self, now: datetime | None = None) -> list[str]:
        """Complete every group whose quiet window has elapsed.

        Failures are isolated per group.  Returns the ids settled by this call.
        """
        now = now or self._clock()
        quiet_cutoff = now - self._quiet_window
        stale_cutoff = now - self._settle_timeout
        settled: list[str] = []

        for candidate in self._repository.list_due_groups(quiet_cutoff, stale_cutoff):
            try:
                if self._claim(candidate.group_id, now, quiet_cutoff, stale_cutoff):
                    self._complete(candidate.group_id, now)
                    settled.append(candidate.group_id)
            except Exception as exc:
                logger.error(
                    "media_group_settle_failed",
                    extra={
                        "group_id": candidate.group_id,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    },
                )

        if settled:
            logger.info("media_groups_settled", extra={"count": len(settled)})
        return settled

    def _claim(
        self,
        group_id: str,
        now: datetime,
        quiet_cutoff: datetime,
        stale_cutoff: datetime,
    ) -> bool:
        outcome = {"claimed": False}

        def claim(current: MediaGroup | None) -> MediaGroup | None:
            outcome["claimed"] = False
            if current is None:
                return None
            quiet = current.state == GroupState.open and current.last_seen_at <= quiet_cutoff
            stale = (
                current.state == GroupState.settling
                and current.settling_since is not None
                and current.settling_since <= stale_cutoff
            )
            if not (quiet or stale):
                return None
            outcome["claimed"] = True
            return current.model_copy(
                update={"state": GroupState.settling, "settling_since": now}
            )

        self._repository.update_group(group_id, claim)
        return outcome["claimed"]

    def _complete(self, group_id: str, now: datetime) -> None:
        """Final reconciliation pass, then SETTLING -> COMPLETE."""
        group = self._repository.get_group(group_id)
        if group is None or group.state != GroupState.settling:
            return

        self._back_propagate(group)

        def complete(current: MediaGroup | None) -> MediaGroup | None:
            if current is None or current.state != GroupState.settling:
                return None
            return current.model_copy(
                update={
                    "state": GroupState.complete,
                    "expected_size": len(current.members),
                    "completed_at": now,
                    "settling_since": None,
                }
            )

        completed = self._repository.update_group(group_id, complete)
        logger.info(
            "media_group_complete",
            extra={
                "group_id": group_id,
                "members": len(completed.members) if completed else None,
                "has_caption": bool(completed and completed.canonical_caption),
                "has_conflict": bool(completed and completed.has_conflict),
            },
        )

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def collect_completed_groups(self, now: datetime | None = None) -> int:
        """Delete COMPLETE groups whose members all reached a terminal state."""
        now = now or self._clock()
        removed = 0
        for group in self._repository.list_completed_groups(now - self._retention):
            records = self._repository.list_records(group_id=group.group_id)
            if all(r.processing_state in TERMINAL_STATES for r in records):
                self._repository.delete_group(group.group_id)
                removed += 1
        if removed:
            logger.info("media_groups_collected", extra={"count": removed})
        return removed
