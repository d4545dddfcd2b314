from __future__ import annotations

from flask import Blueprint, jsonify, request

from storefront.blueprints.auth import admin_required, page_args
from storefront.config import Config
from storefront.database import get_db
from storefront.services.blog_service import BlogService, serialize_post

blog_bp = Blueprint("blog", __name__, url_prefix="/api/blog")


def _get_blog_service() -> BlogService:
    return BlogService(get_db())


@blog_bp.route("/", methods=["GET"])
def list_posts():
    page, limit = page_args(Config.BLOG_PAGE_SIZE)
    result = _get_blog_service().list_published(
        search=request.args.get("search", ""),
        tag=request.args.get("tag") or None,
        page=page,
        limit=limit,
    )
    return jsonify(result)


@blog_bp.route("/slug/<slug>", methods=["GET"])
def get_post(slug: str):
    return jsonify({"post": serialize_post(_get_blog_service().get_by_slug(slug))})


@blog_bp.route("/admin/all", methods=["GET"])
@admin_required
def admin_list_posts():
    return jsonify({"posts": [serialize_post(post) for post in _get_blog_service().list_all()]})


@blog_bp.route("/", methods=["POST"])
@admin_required
def create_post():
    post = _get_blog_service().create_post(request.get_json(silent=True) or {})
    return jsonify({"message": "Blog post created", "post": serialize_post(post)}), 201


@blog_bp.route("/<int:post_id>", methods=["PUT"])
@admin_required
def update_post(post_id: int):
    post = _get_blog_service().update_post(post_id, request.get_json(silent=True) or {})
    return jsonify({"message": "Blog post updated", "post": serialize_post(post)})


@blog_bp.route("/<int:post_id>", methods=["DELETE"])
@admin_required
def delete_post(post_id: int):
    _get_blog_service().delete_post(post_id)
    return jsonify({"message": "Blog post deleted"})
