"""
Artwork object storage on a GridFS bucket.

Objects are addressed by their full key (``artwork/<userId>/<file>``), which
is stored as the GridFS filename; custom metadata written at upload time is
kept on the file document.
"""
import re
from typing import Optional, List, Dict, Any
from urllib.parse import quote

from gridfs.errors import NoFile
from pymongo.errors import PyMongoError

from storefront.shared.utils import settings
from storefront.services.images.models import ImageDescriptor


class StorageError(Exception):
    pass


class ObjectNotFoundError(StorageError):
    pass


class ArtworkStorage:
    def __init__(self, bucket, files, base_url: str = settings.PUBLIC_BASE_URL):
        self.bucket = bucket
        self.files = files
        self.base_url = base_url.rstrip("/")

    def download_url(self, path: str) -> str:
        return f"{self.base_url}/images/files/{quote(path)}"

    async def _find(self, path: str) -> dict:
        try:
            doc = await self.files.find_one({"filename": path}, sort=[("uploadDate", -1)])
        except PyMongoError as e:
            raise StorageError(f"Storage unavailable: {e}")
        if not doc:
            raise ObjectNotFoundError(f"No object at {path}")
        return doc

    async def get_metadata(self, path: str) -> Dict[str, Any]:
        doc = await self._find(path)
        metadata = dict(doc.get("metadata") or {})
        metadata.setdefault("size", doc.get("length"))
        return metadata

    async def get_download_url(self, path: str) -> str:
        await self._find(path)
        return self.download_url(path)

    async def _distinct_names(self, prefix: str) -> List[str]:
        try:
            return await self.files.distinct("filename", {"filename": {"$regex": "^" + re.escape(prefix)}})
        except PyMongoError as e:
            raise StorageError(f"Storage unavailable: {e}")

    async def list_folders(self, root: str) -> List[str]:
        """Immediate sub-folders of ``root`` (one per user)."""
        prefix = root.rstrip("/") + "/"
        folders = set()
        for name in await self._distinct_names(prefix):
            rest = name[len(prefix):]
            if "/" in rest:
                folders.add(prefix + rest.split("/", 1)[0])
        return sorted(folders)

    async def list_objects(self, folder: str) -> List[str]:
        """Objects directly inside ``folder``."""
        prefix = folder.rstrip("/") + "/"
        return sorted(
            name for name in await self._distinct_names(prefix)
            if "/" not in name[len(prefix):]
        )

    async def upload(self, path: str, data: bytes, content_type: Optional[str] = None,
                     metadata: Optional[Dict[str, Any]] = None) -> ImageDescriptor:
        meta = dict(metadata or {})
        if content_type:
            meta["contentType"] = content_type
        try:
            await self.bucket.upload_from_stream(path, data, metadata=meta)
        except PyMongoError as e:
            raise StorageError(f"Upload failed: {e}")
        return ImageDescriptor(
            url=self.download_url(path),
            path=path,
            name=path.rsplit("/", 1)[-1],
            metadata=meta
        )

    async def read(self, path: str) -> bytes:
        try:
            stream = await self.bucket.open_download_stream_by_name(path)
            return await stream.read()
        except NoFile:
            raise ObjectNotFoundError(f"No object at {path}")
        except PyMongoError as e:
            raise StorageError(f"Storage unavailable: {e}")
