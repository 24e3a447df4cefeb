"""
圖片上傳：檢查格式與路徑，以 Pillow 轉正、縮圖並轉存 JPEG
"""
import io
import logging
import os
import re
import secrets
import time

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from PIL import Image, ImageOps

from .exceptions import UploadRejected

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "webp"]
ALLOWED_MIME_TYPES = ["image/jpeg"]
OUTPUT_QUALITY = 85
TARGET_WIDTH = 1200
LARGE_IMAGE_PIXELS = 8_000_000
LARGE_IMAGE_BOX = 1000
MAX_PIXEL_COUNT = 20000 * 20000
DEFAULT_DESTINATION = "bakery"

_SAFE_PATH = re.compile(r"^[a-zA-Z0-9_\-/]+$")


def is_safe_path(folder):
    if not folder or ".." in folder:
        return False
    return bool(_SAFE_PATH.match(folder))


def generate_safe_file_name(original_name):
    ext = os.path.splitext(original_name or "")[1].lower().lstrip(".")
    if ext not in ALLOWED_EXTENSIONS:
        ext = "jpg"
    return f"{int(time.time() * 1000)}_{secrets.token_hex(8)}.{ext}"


def _target_size(width, height):
    if width * height > LARGE_IMAGE_PIXELS:
        if width > height:
            return LARGE_IMAGE_BOX, round(LARGE_IMAGE_BOX * height / width)
        return round(LARGE_IMAGE_BOX * width / height), LARGE_IMAGE_BOX
    if width <= TARGET_WIDTH:
        return width, height
    return TARGET_WIDTH, round(TARGET_WIDTH * height / width)


def process_image(data):
    """轉正 (EXIF)、等比縮小 (不放大)、輸出漸進式 JPEG"""
    Image.MAX_IMAGE_PIXELS = MAX_PIXEL_COUNT
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        size = _target_size(*img.size)
        if size != img.size:
            img = img.resize(size, Image.LANCZOS)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=OUTPUT_QUALITY, progressive=True)
        return out.getvalue()


def store_image(data, destination=DEFAULT_DESTINATION, original_name="image.jpg"):
    """處理並儲存圖片，回傳 (相對路徑, 公開網址路徑)"""
    destination = (destination or DEFAULT_DESTINATION).strip("/")
    if not is_safe_path(destination):
        raise UploadRejected("不安全的上傳路徑")

    try:
        content = process_image(data)
    except Exception as exc:  # Pillow 對壞檔會丟各種例外
        logger.warning("Image processing failed, storing original bytes: %s", exc)
        content = data

    name = f"{destination}/{generate_safe_file_name(original_name)}"
    saved = default_storage.save(name, ContentFile(content))
    logger.info("Stored image %s (%d bytes)", saved, len(content))
    return saved, default_storage.url(saved)


def handle_uploaded_file(uploaded, destination=None):
    if uploaded is None:
        raise UploadRejected("未找到檔案")
    if uploaded.content_type not in ALLOWED_MIME_TYPES:
        raise UploadRejected("僅支援JPG圖片格式")
    if uploaded.size > settings.UPLOAD_MAX_FILE_SIZE:
        raise UploadRejected("檔案大小超過 10MB 限制")
    return store_image(uploaded.read(), destination or DEFAULT_DESTINATION, uploaded.name)


def absolute_url(path):
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{settings.PUBLIC_BASE_URL}{path}"
