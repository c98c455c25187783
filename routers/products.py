import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

import database
import storage
from catalog import product_from_form, product_update_from_form
from database import create_document, get_documents, now
from schemas import Product as ProductSchema
from security import require_admin, serialize_doc, to_object_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])
search_router = APIRouter(prefix="/api/search", tags=["products"])


def find_product(product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = database.db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


async def store_image(image: UploadFile) -> str:
    if image.content_type not in storage.ALLOWED_TYPES:
        raise HTTPException(status_code=400, detail="Image must be a JPEG, PNG, WEBP or GIF file")
    content = await image.read()
    if not content:
        raise HTTPException(status_code=400, detail="Image file is required")
    try:
        return await run_in_threadpool(storage.save_image, content, image.filename, image.content_type)
    except storage.StorageError as e:
        logger.error("Image upload failed: %s", e)
        raise HTTPException(status_code=500, detail="Image upload failed")


def checked_product(fields: dict) -> dict:
    """Run the stored-document checks before any write."""
    try:
        return ProductSchema(**fields).model_dump()
    except ValidationError as e:
        message = e.errors()[0]["msg"].removeprefix("Value error, ")
        raise HTTPException(status_code=400, detail=message)


# ----------------------- Write (admin) -----------------------
@router.post("/create")
async def create_product(request: Request, user=Depends(require_admin)):
    form = await request.form()
    image = form.get("image")
    if not isinstance(image, UploadFile):
        raise HTTPException(status_code=400, detail="Image file is required")
    fields = product_from_form(form)
    fields["image"] = await store_image(image)

    product = checked_product(fields)
    product_id = await run_in_threadpool(create_document, "product", product)
    logger.info("Product %s created by %s", product_id, user.get("email"))
    stored = await run_in_threadpool(find_product, product_id)
    return JSONResponse(status_code=201, content=serialize_doc(stored))


@router.put("/{product_id}")
async def update_product(product_id: str, request: Request, user=Depends(require_admin)):
    form = await request.form()
    current = await run_in_threadpool(find_product, product_id)
    changes = product_update_from_form(form, current)

    image = form.get("image")
    if isinstance(image, UploadFile) and image.filename:
        changes["image"] = await store_image(image)

    merged = {k: v for k, v in current.items() if k in ProductSchema.model_fields}
    merged.update(changes)
    product = checked_product(merged)
    product["updated_at"] = now()
    await run_in_threadpool(database.db["product"].update_one, {"_id": current["_id"]}, {"$set": product})
    logger.info("Product %s updated by %s", product_id, user.get("email"))
    return serialize_doc(await run_in_threadpool(find_product, product_id))


@router.delete("/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin)):
    oid = to_object_id(product_id)
    res = database.db["product"].delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, user.get("email"))
    return {"message": "Product deleted"}


# ----------------------- Read -----------------------
@router.get("")
def list_products(category: Optional[str] = None, sub_category: Optional[str] = None):
    filt = {}
    if category:
        filt["category"] = category
    if sub_category:
        filt["sub_category"] = sub_category
    return [serialize_doc(p) for p in get_documents("product", filt)]


@router.get("/{product_id}")
def get_product(product_id: str):
    return serialize_doc(find_product(product_id))


@search_router.get("")
def search_products(query: Optional[str] = None):
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")
    items = get_documents("product", {"name": {"$regex": re.escape(query), "$options": "i"}})
    return {"products": [serialize_doc(p) for p in items]}
