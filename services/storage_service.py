import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.errors import ServiceError, Stage
from services.document_store import AppwriteClient, new_document_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    file_id: str
    url: str


class ObjectStorage:
    def upload_file(self, file_id: Optional[str], content: bytes, filename: str,
                    content_type: Optional[str] = None) -> StoredFile:
        raise NotImplementedError

    def view_url(self, file_id: str) -> str:
        raise NotImplementedError


class LocalFileStorage(ObjectStorage):
    """
    Keeps uploads in a folder on disk.

    The returned URL is the file path, which Streamlit's st.image can show
    directly.
    """

    def __init__(self, upload_dir):
        self.upload_dir = Path(upload_dir)

    def _ensure_upload_dir_exists(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, file_id: str) -> Path:
        matches = sorted(self.upload_dir.glob(f"{file_id}.*")) + sorted(self.upload_dir.glob(file_id))
        if not matches:
            raise ServiceError(f"File {file_id} not found", stage=Stage.UPLOAD, status_code=404)
        return matches[0]

    def upload_file(self, file_id, content, filename, content_type=None):
        if not content:
            raise ServiceError("Refusing to store an empty file.", stage=Stage.UPLOAD)

        file_id = file_id or new_document_id()
        # Keep the original extension, default to .png if missing
        ext = os.path.splitext(filename or "")[1].lower() or ".png"
        dest_path = self.upload_dir / f"{file_id}{ext}"

        # Write to a temp file first so a failed write never leaves a partial upload
        tmp_path = None
        try:
            self._ensure_upload_dir_exists()
            fd, tmp_path = tempfile.mkstemp(dir=self.upload_dir, suffix=".part")
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, dest_path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise ServiceError(f"Saving upload failed: {e}", stage=Stage.UPLOAD) from e

        logger.info("Stored upload %s (%d bytes)", file_id, len(content))
        return StoredFile(file_id=file_id, url=str(dest_path))

    def view_url(self, file_id):
        return str(self._path_for(file_id))


class AppwriteStorage(ObjectStorage):
    def __init__(self, client: AppwriteClient, bucket_id: str):
        self.client = client
        self.bucket_id = bucket_id

    def upload_file(self, file_id, content, filename, content_type=None):
        if not content:
            raise ServiceError("Refusing to store an empty file.", stage=Stage.UPLOAD)
        file_id = file_id or new_document_id()
        files = {"file": (filename or f"{file_id}.png", content, content_type or "application/octet-stream")}
        try:
            raw = self.client.request(
                "POST",
                f"/storage/buckets/{self.bucket_id}/files",
                "Uploading file",
                data={"fileId": file_id},
                files=files,
            )
        except ServiceError as e:
            raise e.with_stage(Stage.UPLOAD)
        stored_id = raw.get("$id") or file_id
        # Chunked uploads report progress; anything short of complete is a failure
        total = raw.get("chunksTotal")
        uploaded = raw.get("chunksUploaded")
        if total is not None and uploaded is not None and uploaded < total:
            raise ServiceError(f"Upload of {stored_id} incomplete ({uploaded}/{total} chunks)", stage=Stage.UPLOAD)
        logger.info("Uploaded file %s to bucket %s", stored_id, self.bucket_id)
        return StoredFile(file_id=stored_id, url=self.view_url(stored_id))

    def view_url(self, file_id):
        return (
            f"{self.client.endpoint}/storage/buckets/{self.bucket_id}/files/{file_id}"
            f"/view?project={self.client.project_id}"
        )
