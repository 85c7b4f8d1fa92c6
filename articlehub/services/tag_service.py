"""
Tag service: upsert-by-name reconciliation of tag references.

Tags are never deleted by article operations; a tag whose last article
goes away simply stays in the table.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.errors import ConflictError
from articlehub.models import Tag

logger = logging.getLogger(__name__)


def normalize_tag_names(tag_names: list[str]) -> list[str]:
    """Strip whitespace, drop blanks and duplicates, keep first-seen order."""
    seen: dict[str, None] = {}
    for name in tag_names:
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


async def _find_existing(db: AsyncSession, names: list[str]) -> dict[str, Tag]:
    result = await db.execute(select(Tag).where(Tag.name.in_(names)))
    return {tag.name: tag for tag in result.scalars().all()}


async def reconcile_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag rows for *tag_names*, creating the ones that do not exist yet.

    One batched SELECT finds the existing tags; each missing name becomes a
    new Tag, flushed inside the caller's transaction.  Calling this again
    with the same names creates nothing and returns the same rows.

    Raises ConflictError when another transaction inserted one of the new
    names first (unique constraint on ``tags.name``).  The request can be
    retried once; the second attempt will find the tag.
    """
    names = normalize_tag_names(tag_names)
    if not names:
        return []

    existing = await _find_existing(db, names)

    created = [Tag(name=name) for name in names if name not in existing]
    if created:
        db.add_all(created)
        try:
            await db.flush()
        except IntegrityError as exc:
            logger.warning(
                "Concurrent tag creation for %s", [t.name for t in created]
            )
            raise ConflictError(
                "A tag with the same name was created concurrently; retry the request"
            ) from exc
        logger.debug("Created %d new tag(s): %s", len(created), [t.name for t in created])

    by_name = {**existing, **{tag.name: tag for tag in created}}
    return [by_name[name] for name in names]
