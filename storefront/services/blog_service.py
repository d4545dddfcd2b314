from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import BlogPost, BlogStatus, BlogTag
from storefront.services.errors import ConflictError, NotFoundError, ValidationError
from storefront.services.payloads import (
    LIKE_ESCAPE,
    contains_pattern,
    has_any,
    iso,
    parse_datetime,
    parse_int,
    parse_string_list,
    pick,
    text,
)

TAG_CLOUD_SIZE = 20


def slugify(value: str) -> str:
    """Lowercase ASCII slug: ``"Summer Sale: 50% off!"`` -> ``"summer-sale-50-off"``."""
    value = value.lower().strip()
    value = re.sub(r"[^a-z0-9\s_-]", "", value)
    value = re.sub(r"[\s_-]+", "-", value)
    return value.strip("-")


def serialize_post(post: BlogPost, include_content: bool = True) -> Dict[str, Any]:
    data = {
        "id": post.postID,
        "title": post.title,
        "slug": post.slug,
        "summary": post.summary,
        "cover_image": post.cover_image,
        "tags": post.tags,
        "reading_minutes": post.reading_minutes,
        "published_at": iso(post.published_at),
        "created_at": iso(post.created_at),
    }
    if include_content:
        data.update(
            {
                "content": post.content,
                "status": post.status.value if hasattr(post.status, "value") else post.status,
                "seo_title": post.seo_title,
                "seo_description": post.seo_description,
                "updated_at": iso(post.updated_at),
            }
        )
    return data


class BlogService:
    def __init__(self, db_session: Session, page_size: Optional[int] = None) -> None:
        self.db = db_session
        self.page_size = page_size or Config.BLOG_PAGE_SIZE
        self.logger = logging.getLogger(__name__)

    # Public ------------------------------------------------------------
    def list_published(
        self,
        search: Optional[str] = None,
        tag: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        page = max(1, page)
        limit = limit or self.page_size

        query = self.db.query(BlogPost).filter(BlogPost.status == BlogStatus.PUBLISHED)
        if tag:
            query = query.filter(BlogPost.tag_rows.any(BlogTag.name == tag))
        if search and search.strip():
            pattern = contains_pattern(search.strip())
            query = query.filter(
                or_(
                    BlogPost.title.ilike(pattern, escape=LIKE_ESCAPE),
                    BlogPost.summary.ilike(pattern, escape=LIKE_ESCAPE),
                    BlogPost.content.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )

        total = query.count()
        posts = (
            query.order_by(desc(BlogPost.published_at), desc(BlogPost.created_at), desc(BlogPost.postID))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "posts": [serialize_post(post, include_content=False) for post in posts],
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
            "tags": self.tag_cloud(),
        }

    def tag_cloud(self, size: int = TAG_CLOUD_SIZE) -> List[Dict[str, Any]]:
        uses = func.count(BlogTag.tagID).label("uses")
        rows = (
            self.db.query(BlogTag.name, uses)
            .join(BlogPost, BlogPost.postID == BlogTag.postID)
            .filter(BlogPost.status == BlogStatus.PUBLISHED)
            .group_by(BlogTag.name)
            .order_by(desc(uses), BlogTag.name)
            .limit(size)
            .all()
        )
        return [{"name": name, "count": int(count)} for name, count in rows]

    def get_by_slug(self, slug: str) -> BlogPost:
        post = (
            self.db.query(BlogPost)
            .filter(BlogPost.slug == slug, BlogPost.status == BlogStatus.PUBLISHED)
            .first()
        )
        if post is None:
            raise NotFoundError("Post not found")
        return post

    # Admin -------------------------------------------------------------
    def list_all(self) -> List[BlogPost]:
        return self.db.query(BlogPost).order_by(desc(BlogPost.created_at), desc(BlogPost.postID)).all()

    def create_post(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> BlogPost:
        title = text(payload.get("title"))
        if not title:
            raise ValidationError("Title is required")

        post = BlogPost(title=title, slug=self._unique_slug(title), status=BlogStatus.DRAFT)
        self._apply(post, payload, now)
        self.db.add(post)
        self._commit(post, "create")
        self.logger.info("Blog post %s created", post.slug, extra={"post_id": post.postID})
        return post

    def update_post(self, post_id: int, payload: Dict[str, Any], now: Optional[datetime] = None) -> BlogPost:
        post = self._get(post_id)
        try:
            if "title" in payload:
                title = text(payload.get("title"))
                if not title:
                    raise ValidationError("Title is required")
                post.title = title
                post.slug = self._unique_slug(title, exclude_id=post.postID)
            self._apply(post, payload, now)
        except (ValidationError, ConflictError):
            # Discard the half-applied changes
            self.db.rollback()
            raise
        self._commit(post, "update")
        return post

    def delete_post(self, post_id: int) -> None:
        post = self._get(post_id)
        try:
            self.db.delete(post)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to delete blog post %s", post_id)
            raise
        self.logger.info("Blog post %s deleted", post_id)

    # Helpers -----------------------------------------------------------
    def _get(self, post_id: int) -> BlogPost:
        post = self.db.get(BlogPost, post_id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def _unique_slug(self, title: str, exclude_id: Optional[int] = None) -> str:
        slug = slugify(title)
        if not slug:
            raise ValidationError("Title must contain letters or digits")
        query = self.db.query(BlogPost.postID).filter(BlogPost.slug == slug)
        if exclude_id is not None:
            query = query.filter(BlogPost.postID != exclude_id)
        if query.first():
            raise ConflictError("A post with this slug already exists")
        return slug

    def _apply(self, post: BlogPost, payload: Dict[str, Any], now: Optional[datetime]) -> None:
        """Copy the optional fields; validation errors leave the post untouched in the database."""
        if "status" in payload:
            try:
                post.status = BlogStatus(payload.get("status") or BlogStatus.DRAFT.value)
            except ValueError:
                raise ValidationError("Status must be draft or published")

        for attribute, keys in (
            ("summary", ("summary",)),
            ("content", ("content",)),
            ("cover_image", ("coverImage", "cover_image")),
            ("seo_title", ("seoTitle", "seo_title")),
            ("seo_description", ("seoDescription", "seo_description")),
        ):
            if has_any(payload, *keys):
                setattr(post, attribute, text(pick(payload, *keys)))

        if has_any(payload, "readingMinutes", "reading_minutes"):
            raw = pick(payload, "readingMinutes", "reading_minutes")
            minutes = 3 if raw in (None, "") else parse_int(raw, "readingMinutes")
            if minutes <= 0:
                raise ValidationError("readingMinutes must be positive")
            post.reading_minutes = minutes

        if "tags" in payload:
            post.set_tags(parse_string_list(payload.get("tags"), "tags"))

        if has_any(payload, "publishedAt", "published_at"):
            post.published_at = parse_datetime(pick(payload, "publishedAt", "published_at"), "publishedAt")
        if post.status == BlogStatus.PUBLISHED and post.published_at is None:
            post.published_at = now or datetime.now(timezone.utc)

    def _commit(self, post: BlogPost, action: str) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race for the slug
            self.db.rollback()
            raise ConflictError("A post with this slug already exists")
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to %s blog post", action)
            raise
        self.db.refresh(post)
