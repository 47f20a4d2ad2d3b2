from unittest.mock import MagicMock

import pytest
import requests

from core.errors import ServiceError, Stage
from services.document_store import AppwriteClient
from services.ocr_service import HttpOcrClient
from services.storage_service import AppwriteStorage, LocalFileStorage


# -----------------------------
# Local storage
# -----------------------------
def test_local_storage_writes_whole_file(storage):
    stored = storage.upload_file(None, b"abc", "Scan.JPG", "image/jpeg")

    assert stored.url.endswith(f"{stored.file_id}.jpg")
    with open(stored.url, "rb") as f:
        assert f.read() == b"abc"
    assert storage.view_url(stored.file_id) == stored.url
    assert not list(storage.upload_dir.glob("*.part"))


def test_local_storage_folder_errors_are_tagged(tmp_path):
    blocker = tmp_path / "not-a-folder"
    blocker.write_bytes(b"")

    with pytest.raises(ServiceError) as exc:
        LocalFileStorage(blocker / "uploads").upload_file(None, b"abc", "scan.png")
    assert exc.value.stage is Stage.UPLOAD


def test_local_storage_refuses_empty_content(storage):
    with pytest.raises(ServiceError) as exc:
        storage.upload_file(None, b"", "x.png")
    assert exc.value.stage is Stage.UPLOAD


# -----------------------------
# Appwrite storage
# -----------------------------
def appwrite_storage(body, status=201):
    http = MagicMock()
    resp = http.request.return_value
    resp.status_code = status
    resp.content = b"{}"
    resp.json.return_value = body
    client = AppwriteClient("https://aw.test/v1", "proj", "key", session=http)
    return AppwriteStorage(client, "bucket"), http


def test_appwrite_upload_returns_view_url():
    storage, http = appwrite_storage({"$id": "f1", "chunksTotal": 1, "chunksUploaded": 1})

    stored = storage.upload_file("f1", b"img", "form.png", "image/png")

    assert stored.url == "https://aw.test/v1/storage/buckets/bucket/files/f1/view?project=proj"
    kwargs = http.request.call_args.kwargs
    assert kwargs["data"] == {"fileId": "f1"}
    assert kwargs["files"]["file"][0] == "form.png"


def test_appwrite_partial_upload_is_a_failure():
    storage, _ = appwrite_storage({"$id": "f1", "chunksTotal": 3, "chunksUploaded": 2})
    with pytest.raises(ServiceError) as exc:
        storage.upload_file("f1", b"img", "form.png")
    assert exc.value.stage is Stage.UPLOAD


def test_appwrite_upload_http_error_is_tagged():
    storage, _ = appwrite_storage({"message": "bucket full"}, status=507)
    with pytest.raises(ServiceError) as exc:
        storage.upload_file(None, b"img", "form.png")
    assert exc.value.stage is Stage.UPLOAD
    assert exc.value.status_code == 507


# -----------------------------
# OCR
# -----------------------------
def ocr_client(body=None, error=None):
    session = MagicMock()
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value.json.return_value = body
    return HttpOcrClient("https://ocr.test", api_key="secret", session=session), session


def test_ocr_reads_text_and_collapses_whitespace():
    client, session = ocr_client({"text": "Name:  Juan\n\nDOB: 3/4/1990"})

    assert client.extract_text(b"img", "form.png") == "Name: Juan DOB: 3/4/1990"
    assert session.post.call_args.kwargs["headers"] == {"x-api-key": "secret"}


def test_ocr_accepts_ocr_text_key_and_empty_answers():
    assert ocr_client({"ocrText": "hello"})[0].extract_text(b"img") == "hello"
    assert ocr_client({})[0].extract_text(b"img") == ""


def test_ocr_failure_is_tagged():
    client, _ = ocr_client(error=requests.ConnectionError("refused"))
    with pytest.raises(ServiceError) as exc:
        client.extract_text(b"img")
    assert exc.value.stage is Stage.OCR


def text_response(body: bytes, status=200) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp.encoding = "utf-8"
    return resp


def test_ocr_non_json_answer_is_reported_as_invalid_json():
    session = MagicMock()
    session.post.return_value = text_response(b"<html>gateway</html>")

    with pytest.raises(ServiceError) as exc:
        HttpOcrClient("https://ocr.test", session=session).extract_text(b"img")
    assert "invalid JSON" in str(exc.value)
    assert exc.value.stage is Stage.OCR
