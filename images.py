import logging
from typing import Optional, Tuple

from bson import Binary

from database import IMAGES, DocumentStore

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "/api/images/"


class ImageStore:
    """Uploaded images kept as blobs in the document store, served from /api/images/<id>."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def upload_image(self, data: bytes, mime_type: str) -> str:
        return self.store.create_document(IMAGES, {"data": Binary(data), "mimeType": mime_type})

    def get_image(self, image_id: str) -> Optional[Tuple[bytes, str]]:
        doc = self.store.find_by_id(IMAGES, image_id)
        if not doc:
            return None
        return bytes(doc["data"]), doc.get("mimeType", "application/octet-stream")

    def delete_image(self, url: str) -> bool:
        if not url or not url.startswith(LOCAL_PREFIX):
            return False
        image_id = url[len(LOCAL_PREFIX):]
        deleted = self.store[IMAGES].delete_one({"id": image_id}).deleted_count
        if deleted:
            logger.info("Image %s deleted", image_id)
        return bool(deleted)

    @staticmethod
    def url_for(image_id: str) -> str:
        return f"{LOCAL_PREFIX}{image_id}"
