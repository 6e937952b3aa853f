import io
import logging
import uuid
from datetime import datetime
from typing import Optional

import boto3
from botocore.config import Config
from fastapi.concurrency import run_in_threadpool
from PIL import Image, ImageOps, UnidentifiedImageError

from config import (
    AWS_KEY_ID,
    AWS_SECRET_KEY,
    MAX_UPLOAD_SIZE,
    S3_BUCKET,
    S3_ENDPOINT_URL,
    S3_PUBLIC_URL,
    S3_REGION,
)

logger = logging.getLogger(__name__)


class ImageValidationError(ValueError):
    """The uploaded bytes are not an acceptable image."""


class ImageUploadError(RuntimeError):
    """The object store rejected or failed the upload."""


class ImageStorage:
    # Formats as reported by Pillow
    ALLOWED_FORMATS = {"JPEG", "PNG", "GIF", "WEBP"}

    MAX_IMAGE_DIMENSIONS = (4096, 4096)

    AVATAR_SIZE = (300, 300)
    COVER_SIZE = (1200, 630)
    CONTENT_MAX_WIDTH = 800

    def __init__(self, s3_client=None, bucket: str = S3_BUCKET, public_url: str = S3_PUBLIC_URL,
                 max_size: int = MAX_UPLOAD_SIZE):
        self._s3_client = s3_client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.max_size = max_size

    @property
    def s3_client(self):
        """Lazily create an S3 client for the configured endpoint."""
        if self._s3_client is None:
            config = Config(
                region_name=S3_REGION,
                s3={
                    "addressing_style": "virtual"
                }
            )
            self._s3_client = boto3.client(
                "s3",
                endpoint_url=S3_ENDPOINT_URL,
                aws_access_key_id=AWS_KEY_ID,
                aws_secret_access_key=AWS_SECRET_KEY,
                region_name=S3_REGION,
                config=config
            )
        return self._s3_client

    def _open(self, data: bytes) -> Image.Image:
        if not data:
            raise ImageValidationError("No image provided")
        if len(data) > self.max_size:
            raise ImageValidationError("Image too large")

        try:
            img = Image.open(io.BytesIO(data))
            img.verify()
            img = Image.open(io.BytesIO(data))
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            logger.warning(f"Rejected unreadable image: {str(e)}")
            raise ImageValidationError("Invalid image format")

        if img.format not in self.ALLOWED_FORMATS:
            raise ImageValidationError("Invalid image format")
        if img.size[0] > self.MAX_IMAGE_DIMENSIONS[0] or \
                img.size[1] > self.MAX_IMAGE_DIMENSIONS[1]:
            raise ImageValidationError("Image dimensions too large")
        return img

    @staticmethod
    def _to_rgb(img: Image.Image) -> Image.Image:
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img

    def process(self, data: bytes, kind: str) -> bytes:
        """
        Validate and re-encode an upload as JPEG sized for its kind.

        Args:
            data: Raw uploaded bytes
            kind: One of "avatar", "cover" or "content"

        Returns:
            bytes: JPEG encoded image

        Raises:
            ImageValidationError: If the bytes are not an acceptable image
        """
        img = self._to_rgb(self._open(data))

        if kind == "avatar":
            img = ImageOps.fit(img, self.AVATAR_SIZE, Image.LANCZOS)
        elif kind == "cover":
            img = ImageOps.fit(img, self.COVER_SIZE, Image.LANCZOS)
        elif img.size[0] > self.CONTENT_MAX_WIDTH:
            height = round(img.size[1] * self.CONTENT_MAX_WIDTH / img.size[0])
            img = img.resize((self.CONTENT_MAX_WIDTH, max(height, 1)), Image.LANCZOS)

        output = io.BytesIO()
        img.save(output, format="JPEG", quality=85, optimize=True)
        return output.getvalue()

    @staticmethod
    def _generate_key(folder: str, prefix: Optional[str] = None) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        unique_id = str(uuid.uuid4())[:8]
        name = f"{prefix}_{timestamp}_{unique_id}" if prefix else f"{timestamp}_{unique_id}"
        return f"blogify/{folder}/{name}.jpg"

    def _put(self, key: str, body: bytes):
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="image/jpeg"
            )
        except Exception as e:
            logger.error(f"S3 upload error: {str(e)}")
            raise ImageUploadError("Failed to upload image") from e

    async def _upload(self, data: bytes, kind: str, folder: str, prefix: Optional[str] = None) -> dict:
        body = await run_in_threadpool(self.process, data, kind)
        key = self._generate_key(folder, prefix)
        await run_in_threadpool(self._put, key, body)
        logger.info(f"Uploaded {kind} image {key}")
        return {"url": f"{self.public_url}/{key}", "publicId": key}

    async def upload_avatar(self, data: bytes, user_id: int) -> dict:
        return await self._upload(data, "avatar", "avatars", f"user_{user_id}")

    async def upload_cover(self, data: bytes, slug: str) -> dict:
        return await self._upload(data, "cover", "covers", slug)

    async def upload_content_image(self, data: bytes) -> dict:
        return await self._upload(data, "content", "content")

    def public_id_from_url(self, url: str) -> Optional[str]:
        prefix = f"{self.public_url}/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):]

    async def delete_image(self, url: Optional[str]) -> bool:
        """Best-effort removal of an image this storage uploaded."""
        key = self.public_id_from_url(url)
        if not key:
            return False
        try:
            await run_in_threadpool(self.s3_client.delete_object, Bucket=self.bucket, Key=key)
            return True
        except Exception as e:
            logger.error(f"Failed to delete image {key}: {str(e)}")
            return False


_default_storage = None


def get_image_storage() -> ImageStorage:
    global _default_storage
    if _default_storage is None:
        _default_storage = ImageStorage()
    return _default_storage
