from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

from flask import Blueprint, current_app, jsonify, request
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from storefront.services.errors import ValidationError
from storefront.services.media_service import CloudinaryUploader, allowed_file

uploads_bp = Blueprint("uploads", __name__, url_prefix="/api")

SCREENSHOT_FOLDER = "orders/screenshots"


def save_temp_upload(file: Optional[FileStorage]) -> Optional[str]:
    """Store an incoming image under UPLOAD_TMP_DIR; the uploader removes it afterwards."""
    if file is None or not file.filename:
        return None
    if not allowed_file(file.filename):
        raise ValidationError("Only images allowed")
    tmp_dir = Path(current_app.config["UPLOAD_TMP_DIR"])
    tmp_dir.mkdir(parents=True, exist_ok=True)
    path = tmp_dir / f"{uuid.uuid4().hex}-{secure_filename(file.filename)}"
    file.save(path)
    return str(path)


@uploads_bp.route("/upload", methods=["POST"])
def upload_screenshot():
    path = save_temp_upload(request.files.get("file"))
    if path is None:
        return jsonify({"error": "No file uploaded"}), 400
    url = CloudinaryUploader().upload(path, folder=SCREENSHOT_FOLDER)
    return jsonify({"url": url})
