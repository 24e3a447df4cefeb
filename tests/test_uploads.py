import io
import re

import pytest
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from PIL import Image

from bakery import uploads
from bakery.exceptions import UploadRejected


def jpeg_bytes(size=(1600, 800), color=(200, 150, 90)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.mark.parametrize(
    "folder, ok",
    [("bakery/products", True), ("../etc", False), ("a b", False), ("", False), ("uploads/contracts", True)],
)
def test_is_safe_path(folder, ok):
    assert uploads.is_safe_path(folder) is ok


def test_generated_name_keeps_known_extension():
    assert re.match(r"^\d{13}_[0-9a-f]{16}\.png$", uploads.generate_safe_file_name("Cake.PNG"))
    assert uploads.generate_safe_file_name("script.exe").endswith(".jpg")


def test_process_image_scales_down_without_upscaling():
    with Image.open(io.BytesIO(uploads.process_image(jpeg_bytes((1600, 800))))) as img:
        assert img.size == (1200, 600)
    with Image.open(io.BytesIO(uploads.process_image(jpeg_bytes((640, 480))))) as img:
        assert img.size == (640, 480)


def test_process_image_shrinks_huge_images_to_box():
    assert uploads._target_size(4000, 3000) == (1000, 750)
    assert uploads._target_size(2000, 5000) == (400, 1000)


def test_store_image_rejects_unsafe_destination():
    with pytest.raises(UploadRejected):
        uploads.store_image(jpeg_bytes(), "../outside")


def test_only_jpeg_uploads_are_accepted():
    png = SimpleUploadedFile("a.png", b"\x89PNG", content_type="image/png")
    with pytest.raises(UploadRejected):
        uploads.handle_uploaded_file(png)
    with pytest.raises(UploadRejected):
        uploads.handle_uploaded_file(None)


def test_oversized_upload_is_rejected(settings):
    settings.UPLOAD_MAX_FILE_SIZE = 10
    big = SimpleUploadedFile("a.jpg", jpeg_bytes(), content_type="image/jpeg")
    with pytest.raises(UploadRejected):
        uploads.handle_uploaded_file(big)


@pytest.mark.django_db
def test_upload_endpoint(line_client):
    upload = SimpleUploadedFile("bread.jpg", jpeg_bytes(), content_type="image/jpeg")
    res = line_client.post(
        "/api/upload", {"file": upload, "destination": "bakery/products"}, format="multipart"
    )

    assert res.status_code == 200
    body = res.json()
    assert body["filePath"].startswith("/media/bakery/products/")
    assert body["url"] == "https://shop.example.com" + body["filePath"]
    with default_storage.open(body["name"]) as fh:
        assert Image.open(fh).size == (1200, 600)


@pytest.mark.django_db
def test_upload_endpoint_rejects_png_and_anonymous(line_client, api_client):
    png = SimpleUploadedFile("a.png", b"\x89PNG", content_type="image/png")
    res = line_client.post("/api/upload", {"file": png}, format="multipart")
    assert res.status_code == 400
    assert res.json()["message"] == "僅支援JPG圖片格式"

    upload = SimpleUploadedFile("bread.jpg", jpeg_bytes(), content_type="image/jpeg")
    assert api_client.post("/api/upload", {"file": upload}, format="multipart").status_code == 401
