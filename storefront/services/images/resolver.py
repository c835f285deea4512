"""
Best-effort lookup of the artwork that belongs to an order.

Strategies run in order and the first one that returns images wins:

1. item_scan        - explicit image arrays and storage fields on line items,
                      confirmed against storage
2. metadata_lookup  - every object under the artwork root whose custom
                      metadata carries the order id (``orderId`` or the legacy
                      ``orderTemp``), falling back to the id appearing in the
                      object path
3. direct_fields    - raw ``storagePath``/``storageUrl``/``coverImage`` values,
                      not confirmed

Finding nothing is a normal outcome. ``ImageLookupError`` is raised only when
nothing was found and a strategy could not reach storage, since the empty
result cannot be trusted then.
"""
import asyncio
import logging
from typing import Optional, List

from storefront.shared.utils import settings
from storefront.services.cart.models import CartItemDB
from storefront.services.orders.models import OrderDB
from storefront.services.images.models import ImageDescriptor, ImageLookupResult
from storefront.services.images.storage import ArtworkStorage, StorageError, ObjectNotFoundError

logger = logging.getLogger("storefront.images")

INLINE_URI_PREFIXES = ("data:", "blob:")


class ImageLookupError(Exception):
    pass


def is_fetchable_url(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    return not value.strip().lower().startswith(INLINE_URI_PREFIXES)


def basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class OrderImageResolver:
    def __init__(self, storage: ArtworkStorage, artwork_root: str = settings.ARTWORK_ROOT):
        self.storage = storage
        self.artwork_root = artwork_root
        self.strategies = [
            ("item_scan", self.scan_items),
            ("metadata_lookup", self.lookup_by_metadata),
            ("direct_fields", self.extract_direct_fields),
        ]

    async def resolve(self, order: Optional[OrderDB] = None, order_id: Optional[str] = None) -> ImageLookupResult:
        if order is None and not order_id:
            raise ValueError("An order or an order id is required")
        target_id = order_id or order.id
        failures = []

        for name, strategy in self.strategies:
            try:
                images = await strategy(order, target_id)
            except StorageError as e:
                logger.warning(f"Image strategy {name} failed: {e}", extra={"order_id": target_id, "strategy": name})
                failures.append(name)
                continue
            if images:
                images = self._finish(images)
                logger.info("Order images resolved", extra={
                    "order_id": target_id, "strategy": name, "count": len(images)
                })
                return ImageLookupResult(order_id=target_id, images=images, strategy=name)

        if failures:
            raise ImageLookupError(f"Image lookup failed for order {target_id}: storage unavailable ({', '.join(failures)})")

        return ImageLookupResult(order_id=target_id, images=[], reasons=self._empty_reasons(order))

    def _finish(self, images: List[ImageDescriptor]) -> List[ImageDescriptor]:
        seen = set()
        unique = []
        for image in images:
            if image.url in seen:
                continue
            seen.add(image.url)
            unique.append(image)
        for index, image in enumerate(unique, start=1):
            if not image.name:
                image.name = f"image_{index}.jpg"
        return unique

    def _empty_reasons(self, order: Optional[OrderDB]) -> List[str]:
        reasons = []
        if order is None:
            reasons.append("Only an order id was given, so line items could not be checked")
        elif not order.items:
            reasons.append("The order has no line items")
        else:
            reasons.append("No line item references uploaded artwork")
        reasons.append("No stored artwork is tagged with this order id")
        reasons.append("The order may have been placed before the artwork upload completed")
        return reasons

    # --- Strategy 1 ---

    async def scan_items(self, order: Optional[OrderDB], order_id: Optional[str]) -> Optional[List[ImageDescriptor]]:
        if order is None:
            return None

        lookups = []
        direct = []
        for item in order.items:
            for image in item.images:
                if image.path:
                    lookups.append(self._resolve_path(image.path, image.original_name or image.name, item.id))
            if item.storage_path:
                lookups.append(self._resolve_path(item.storage_path, None, item.id))
            if is_fetchable_url(item.storage_url):
                direct.append(ImageDescriptor(url=item.storage_url, item_id=item.id))
            if is_fetchable_url(item.cover_image):
                direct.append(ImageDescriptor(url=item.cover_image, item_id=item.id))

        results = await asyncio.gather(*lookups, return_exceptions=True)
        images = []
        storage_down = False
        for result in results:
            if isinstance(result, ImageDescriptor):
                images.append(result)
            elif isinstance(result, ObjectNotFoundError):
                logger.warning(str(result), extra={"order_id": order_id})
            elif isinstance(result, StorageError):
                storage_down = True
                logger.warning(f"Error processing image: {result}", extra={"order_id": order_id})
            elif isinstance(result, BaseException):
                raise result

        images.extend(direct)
        if not images and storage_down:
            raise StorageError("Could not resolve item images")
        return images

    async def _resolve_path(self, path: str, name: Optional[str], item_id: Optional[str]) -> ImageDescriptor:
        url = await self.storage.get_download_url(path)
        metadata = await self.storage.get_metadata(path)
        return ImageDescriptor(url=url, path=path, name=name or basename(path), metadata=metadata, item_id=item_id)

    # --- Strategy 2 ---

    async def lookup_by_metadata(self, order: Optional[OrderDB], order_id: Optional[str]) -> Optional[List[ImageDescriptor]]:
        if not order_id:
            return None

        folders = await self.storage.list_folders(self.artwork_root)
        listings = await asyncio.gather(*(self.storage.list_objects(folder) for folder in folders))
        paths = [path for listing in listings for path in listing]

        metadata = await asyncio.gather(*(self.storage.get_metadata(path) for path in paths), return_exceptions=True)
        matches = []
        for path, meta in zip(paths, metadata):
            if isinstance(meta, StorageError):
                logger.warning(f"Could not read metadata for {path}: {meta}", extra={"order_id": order_id})
                continue
            if isinstance(meta, BaseException):
                raise meta
            if order_id in (meta.get("orderId"), meta.get("orderTemp")):
                matches.append(self._descriptor(path, meta))

        if not matches:
            matches = [
                self._descriptor(path, meta if isinstance(meta, dict) else {})
                for path, meta in zip(paths, metadata)
                if order_id in path
            ]
        return matches

    def _descriptor(self, path: str, metadata: dict) -> ImageDescriptor:
        return ImageDescriptor(
            url=self.storage.download_url(path),
            path=path,
            name=metadata.get("originalName") or basename(path),
            metadata=metadata
        )

    # --- Strategy 3 ---

    async def extract_direct_fields(self, order: Optional[OrderDB], order_id: Optional[str]) -> Optional[List[ImageDescriptor]]:
        if order is None:
            return None
        images = []
        for item in order.items:
            images.extend(self._item_fields(item))
        return images

    def _item_fields(self, item: CartItemDB) -> List[ImageDescriptor]:
        found = []
        if item.storage_path:
            found.append(ImageDescriptor(
                url=self.storage.download_url(item.storage_path),
                path=item.storage_path,
                name=basename(item.storage_path),
                item_id=item.id
            ))
        if is_fetchable_url(item.storage_url):
            found.append(ImageDescriptor(url=item.storage_url, item_id=item.id))
        if is_fetchable_url(item.cover_image):
            found.append(ImageDescriptor(url=item.cover_image, item_id=item.id))
        return found
