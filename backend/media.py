"""
Cloudinary-backed image storage.

Uploads and deletions report failures as ``(result, error)`` pairs so the
controllers can turn them into envelope responses; nothing is retried.
"""
import os
from typing import Dict, Optional, Tuple

import cloudinary
import cloudinary.uploader
from werkzeug.utils import secure_filename

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
DEFAULT_FOLDER = "products"


def is_valid_image_header(file_content: bytes) -> bool:
    if len(file_content) < 12:
        return False

    if file_content.startswith(b"\xff\xd8\xff"):
        return True
    if file_content.startswith(b"\x89PNG\r\n\x1a\n"):
        return True
    if file_content.startswith((b"GIF87a", b"GIF89a")):
        return True
    if file_content.startswith(b"BM"):
        return True
    if file_content[:4] == b"RIFF" and file_content[8:12] == b"WEBP":
        return True
    return False


class MediaService:
    def __init__(self, cloud_name: Optional[str], api_key: Optional[str], api_secret: Optional[str], logger):
        self.logger = logger
        self.configured = all([cloud_name, api_key, api_secret])
        if not self.configured:
            logger.warning(
                "Cloudinary credentials are not set; image upload and delete are unavailable. "
                "Set CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )
            return

        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    @classmethod
    def from_config(cls, config, logger) -> "MediaService":
        return cls(
            config.get("CLOUDINARY_CLOUD_NAME"),
            config.get("CLOUDINARY_API_KEY"),
            config.get("CLOUDINARY_API_SECRET"),
            logger,
        )

    def validate_image(self, file_content: bytes, filename: str, mimetype: Optional[str]) -> Optional[str]:
        safe_name = secure_filename(filename or "")
        if not safe_name:
            return "Please choose a valid file name."

        extension = os.path.splitext(safe_name)[1].lower().lstrip(".")
        if extension not in ALLOWED_IMAGE_EXTENSIONS:
            return "Unsupported image format. Upload PNG, JPG, JPEG, GIF, BMP, or WEBP files."

        if not str(mimetype or "").startswith("image/"):
            return "File must be an image"

        if len(file_content) > MAX_IMAGE_BYTES:
            return "File size cannot exceed 10MB"

        if not is_valid_image_header(file_content):
            return "File is not a valid image"

        return None

    def upload_image(
        self, file_content: bytes, filename: str, folder: Optional[str] = None
    ) -> Tuple[Optional[Dict[str, str]], Optional[str]]:
        target_folder = (folder or "").strip() or DEFAULT_FOLDER
        try:
            result = cloudinary.uploader.upload(
                file_content,
                folder=target_folder,
                resource_type="image",
            )
        except Exception as exc:
            self.logger.error("Error uploading %s to Cloudinary: %s", filename, exc)
            return None, str(exc)

        self.logger.info("Uploaded %s to Cloudinary as %s", filename, result.get("public_id"))
        return {"url": result["secure_url"], "public_id": result["public_id"]}, None

    def delete_image(self, public_id: str) -> Tuple[bool, Optional[str]]:
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type="image")
        except Exception as exc:
            self.logger.error("Error deleting %s from Cloudinary: %s", public_id, exc)
            return False, str(exc)

        outcome = result.get("result") if isinstance(result, dict) else None
        if outcome != "ok":
            self.logger.warning("Cloudinary could not delete %s: %s", public_id, outcome)
            return False, outcome or "Unknown Cloudinary response"

        return True, None
