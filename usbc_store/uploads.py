"""
Product image uploads stored on Cloudinary.
"""
import logging
import os
import time
from typing import Optional, Set

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from werkzeug.utils import secure_filename

from .errors import UploadError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class CloudinaryUploader:
    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "usbc",
        allowed_extensions: Optional[Set[str]] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.allowed_extensions = allowed_extensions or ALLOWED_IMAGE_EXTENSIONS

        if self.is_configured():
            cloudinary.config(
                cloud_name=cloud_name,
                api_key=api_key,
                api_secret=api_secret,
                secure=True,
            )

    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def allowed_image_extension(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        if not extension:
            return False
        return extension in self.allowed_extensions

    def upload(self, image_file, field_name: str = "product") -> str:
        """Upload a werkzeug ``FileStorage`` and return its HTTPS URL."""
        if not image_file or not getattr(image_file, "filename", ""):
            raise ValidationError("An image file is required.", field=field_name)

        original_filename = secure_filename(image_file.filename)
        if not original_filename:
            raise ValidationError("Please choose a valid file name.", field=field_name)

        if not self.allowed_image_extension(original_filename):
            raise ValidationError(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files.",
                field=field_name,
            )

        if not self.is_configured():
            raise UploadError("Cloudinary configuration is incomplete.")

        try:
            result = cloudinary.uploader.upload(
                image_file.stream,
                folder=self.folder,
                public_id=f"{field_name}_{int(time.time() * 1000)}",
                resource_type="image",
            )
        except cloudinary.exceptions.Error as exc:
            logger.error(f"Cloudinary upload failed: {exc}")
            raise UploadError("We could not store the uploaded image. Please try again.")

        image_url = (result or {}).get("secure_url")
        if not image_url:
            raise UploadError("Invalid response from Cloudinary")
        logger.info(f"Stored {original_filename} as {image_url}")
        return image_url
