"""
Product listings

Vendors manage up to three images per product. Images live on the media host;
the product document keeps the ordered ``{url, public_id}`` pairs and the url
of the first one as ``main_image``.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from bson import ObjectId

from auth import vendor_summary
from config import MAX_PRODUCT_IMAGES, Settings
from database import ProductStore, UserStore
from errors import AuthError, NotFoundError, UpstreamError, ValidationError
from media import MediaHost, release_images, upload_images
from schemas import Product

logger = logging.getLogger(__name__)


def image_out(img: dict) -> dict:
    return {"url": img["url"], "publicId": img["public_id"]}


def product_out(doc: dict, vendor: Optional[dict] = None) -> dict:
    out = {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "price": doc.get("price"),
        "category": doc.get("category"),
        "images": [image_out(i) for i in doc.get("images") or []],
        "mainImage": doc.get("main_image"),
        "school": doc.get("school", ""),
        "vendorId": doc.get("vendor_id"),
        "isAvailable": doc.get("is_available", True),
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }
    if vendor is not None:
        out["vendor"] = vendor_summary(vendor)
    return out


def decode_path_segment(value: str) -> str:
    return value.replace("_", " ")


def kept_images(existing: Optional[List[Any]], stored: List[dict]) -> List[dict]:
    """
    Stored images the client asked to keep, in client order, without duplicates.

    Entries need both url and publicId, and the publicId must already belong to
    the product; the stored url is used, not the submitted one.
    """
    by_id = {img["public_id"]: img for img in stored}
    kept, seen = [], set()
    for img in existing or []:
        if not isinstance(img, dict):
            continue
        url, public_id = img.get("url"), img.get("publicId") or img.get("public_id")
        if not url or not public_id or public_id in seen or public_id not in by_id:
            continue
        seen.add(public_id)
        kept.append({"url": by_id[public_id]["url"], "public_id": public_id})
    return kept


def merge_images(kept: List[dict], uploaded: List[dict]) -> List[dict]:
    return (kept + uploaded)[:MAX_PRODUCT_IMAGES]


def main_image_of(images: List[dict]) -> Optional[str]:
    return images[0]["url"] if images else None


def parse_price(value: Any) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number")
    if not math.isfinite(price) or price < 0:
        raise ValidationError("Price must be a positive number")
    return price


def _filled(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value.strip())


class ProductService:
    def __init__(self, products: ProductStore, users: UserStore, media: MediaHost, settings: Settings):
        self.products = products
        self.users = users
        self.media = media
        self.settings = settings

    def _folder(self, vendor_id: str) -> str:
        return f"{self.settings.cloudinary_folder}/products/{vendor_id}"

    def _owned(self, product_id: str, vendor_id: str) -> dict:
        if not ObjectId.is_valid(product_id):
            raise ValidationError("Invalid product ID format")
        product = self.products.get(product_id)
        if not product:
            raise NotFoundError("Product not found")
        if product.get("vendor_id") != vendor_id:
            raise AuthError("Unauthorized", status_code=403)
        return product

    def _with_vendors(self, docs: List[dict]) -> List[dict]:
        vendors = self.users.get_many(d.get("vendor_id") for d in docs)
        # orphaned listings (vendor account gone) are hidden
        return [product_out(d, vendors[d["vendor_id"]]) for d in docs if d.get("vendor_id") in vendors]

    def create(self, vendor: dict, name: Optional[str], description: Optional[str], price: Any,
               category: Optional[str], images: Optional[List[str]] = None) -> dict:
        if not (_filled(name) and _filled(description) and _filled(category)) or price is None:
            raise ValidationError("Name, description, price, and category are required")
        price = parse_price(price)

        uploaded: List[dict] = []
        if images:
            try:
                uploaded = upload_images(self.media, images, self._folder(vendor["id"]))
            except UpstreamError as e:
                logger.warning("Image upload failed while creating product for %s: %s", vendor["id"], e.detail)

        doc = self.products.create(Product(
            name=name,
            description=description,
            price=price,
            category=category,
            images=uploaded,
            main_image=main_image_of(uploaded),
            school=vendor.get("school", ""),
            vendor_id=vendor["id"],
            is_available=True,
        ))
        logger.info("Product %s created by %s", doc["_id"], vendor["id"])
        return product_out(doc)

    def vendor_products(self, vendor: dict) -> List[dict]:
        return [product_out(d) for d in self.products.find({"vendor_id": vendor["id"]})]

    def get(self, vendor: dict, product_id: str) -> dict:
        product = self._owned(product_id, vendor["id"])
        return product_out(product, self.users.get_by_id(vendor["id"]))

    def update(self, vendor: dict, product_id: str, fields: Dict[str, Any],
               existing_images: Optional[List[Any]] = None, new_images: Optional[List[str]] = None) -> dict:
        current = self._owned(product_id, vendor["id"])
        stored = current.get("images") or []

        if existing_images is None and self.settings.keep_images_when_omitted:
            kept = [dict(i) for i in stored]
        else:
            kept = kept_images(existing_images, stored)

        # raises UpstreamError before anything is persisted
        uploaded = upload_images(self.media, new_images or [], self._folder(vendor["id"]))
        final = merge_images(kept, uploaded)

        changes: Dict[str, Any] = {}
        for key in ("name", "description", "category"):
            if _filled(fields.get(key)):
                changes[key] = fields[key]
        if fields.get("price") is not None:
            changes["price"] = parse_price(fields["price"])
        if fields.get("is_available") is not None:
            changes["is_available"] = bool(fields["is_available"])
        changes["images"] = final
        changes["main_image"] = main_image_of(final)

        updated = self.products.update(product_id, changes)
        if not updated:
            raise NotFoundError("Product not found")
        logger.info("Product %s updated by %s", product_id, vendor["id"])

        in_use = {i["public_id"] for i in final}
        dropped = [i["public_id"] for i in stored + uploaded if i["public_id"] not in in_use]
        release_images(self.media, dropped)
        return product_out(updated, self.users.get_by_id(vendor["id"]))

    def delete(self, vendor: dict, product_id: str) -> None:
        product = self._owned(product_id, vendor["id"])
        failed = release_images(self.media, [i.get("public_id") for i in product.get("images") or []])
        if failed:
            logger.warning("Product %s: %d image(s) could not be released", product_id, len(failed))
        self.products.delete(product_id)
        logger.info("Product %s deleted by %s", product_id, vendor["id"])

    def available(self) -> List[dict]:
        return self._with_vendors(self.products.find({"is_available": True}))

    def by_school(self, school: str) -> List[dict]:
        return self._with_vendors(self.products.find({"school": decode_path_segment(school), "is_available": True}))

    def by_category(self, category: str) -> List[dict]:
        return self._with_vendors(self.products.find({"category": decode_path_segment(category), "is_available": True}))
