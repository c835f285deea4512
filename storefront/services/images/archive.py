"""
Zip packaging of order artwork.

Images are fetched concurrently; a failed fetch is logged and skipped so the
archive still contains everything that could be retrieved. Progress runs
0-90 while fetching and 90-100 while compressing.
"""
import asyncio
import io
import logging
import zipfile
from typing import Callable, List, Optional, Tuple

import httpx

from storefront.shared.utils import settings
from storefront.shared.security_config import safe_filename
from storefront.services.orders.models import OrderDB
from storefront.services.images.models import ImageDescriptor, OrderArchive
from storefront.services.images.resolver import OrderImageResolver, basename
from storefront.services.images.storage import StorageError

logger = logging.getLogger("storefront.images")

ProgressCallback = Callable[[float], None]

FETCH_SHARE = 90.0
COMPRESSION_LEVEL = 6


class ArchiveError(Exception):
    pass


class NoImagesError(ArchiveError):
    pass


def archive_folder(order_id: Optional[str]) -> str:
    return f"order_{order_id}_images" if order_id else "selected_images"


def entry_names(images: List[ImageDescriptor]) -> List[str]:
    """File names inside the archive folder, unique and filesystem safe."""
    names = []
    used = set()
    for index, image in enumerate(images, start=1):
        name = safe_filename(image.name or "") or f"image_{index}.jpg"
        if name in used:
            stem, dot, ext = name.rpartition(".")
            name = f"{stem}_{index}.{ext}" if dot else f"{name}_{index}"
        used.add(name)
        names.append(name)
    return names


class ArchiveBuilder:
    def __init__(
        self,
        resolver: OrderImageResolver,
        timeout: float = settings.IMAGE_FETCH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.resolver = resolver
        self.storage = resolver.storage
        self.timeout = timeout
        self.transport = transport

    async def _fetch(self, client: httpx.AsyncClient, image: ImageDescriptor) -> bytes:
        # Stored objects are read straight from the bucket
        if image.path:
            return await self.storage.read(image.path)
        response = await client.get(image.url)
        response.raise_for_status()
        return response.content

    async def fetch_all(
        self,
        images: List[ImageDescriptor],
        on_progress: Optional[ProgressCallback] = None
    ) -> List[Tuple[ImageDescriptor, Optional[bytes]]]:
        total = len(images)
        done = 0

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
            async def fetch_one(index: int, image: ImageDescriptor):
                nonlocal done
                try:
                    content = await self._fetch(client, image)
                except (httpx.HTTPError, StorageError) as e:
                    logger.warning(f"Error fetching image {index} ({image.url}): {e}")
                    content = None
                done += 1
                if on_progress:
                    on_progress(done / total * FETCH_SHARE)
                return image, content

            return await asyncio.gather(*(fetch_one(i, image) for i, image in enumerate(images)))

    def compress(
        self,
        fetched: List[Tuple[ImageDescriptor, bytes]],
        folder: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        buffer = io.BytesIO()
        names = entry_names([image for image, _ in fetched])
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL) as zf:
            for i, ((_, content), name) in enumerate(zip(fetched, names), start=1):
                zf.writestr(f"{folder}/{name}", content)
                if on_progress:
                    on_progress(FETCH_SHARE + i / len(fetched) * (100 - FETCH_SHARE))
        return buffer.getvalue()

    async def build(
        self,
        images: List[ImageDescriptor],
        folder: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> OrderArchive:
        if not images:
            raise NoImagesError("No images found for this order")
        if on_progress:
            on_progress(0.0)

        results = await self.fetch_all(images, on_progress)
        fetched = [(image, content) for image, content in results if content is not None]
        failed = [image.url for image, content in results if content is None]
        if not fetched:
            raise ArchiveError(f"None of the {len(images)} images could be downloaded")

        content = self.compress(fetched, folder, on_progress)
        if failed:
            logger.warning(f"Archive {folder} built with {len(failed)} missing images")
        if on_progress:
            on_progress(100.0)
        return OrderArchive(
            filename=f"{folder}.zip",
            folder=folder,
            content=content,
            file_count=len(fetched),
            failed=failed
        )

    async def save_order_images_as_zip(
        self,
        order: Optional[OrderDB] = None,
        order_id: Optional[str] = None,
        paths: Optional[List[str]] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> OrderArchive:
        """
        Package the images of an order. ``paths`` short-circuits the resolver
        with storage keys the caller already knows.
        """
        if paths:
            images = [
                ImageDescriptor(url=self.storage.download_url(path), path=path, name=basename(path))
                for path in paths
            ]
            target_id = order_id or (order.id if order else None)
        else:
            result = await self.resolver.resolve(order=order, order_id=order_id)
            images = result.images
            target_id = result.order_id
        return await self.build(images, archive_folder(target_id), on_progress)
