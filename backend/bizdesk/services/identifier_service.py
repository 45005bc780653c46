# Overview: Service-layer operations for identifier; builds product slugs and SKUs.

"""
Identifier Service - human-readable slugs and generated SKUs

UNIQUENESS RULES:
- Product.slug: globally unique, suffixed "-2", "-3", ... on collision
- Product.sku: globally unique, upper case; generated SKUs are retried
  until no row uses them
"""

import re
import secrets
import string
import time
import unicodedata

from ..extensions import db
from ..models import Product


BASE36_ALPHABET = string.digits + string.ascii_lowercase
SKU_RANDOM_LENGTH = 4
MAX_SKU_ATTEMPTS = 10


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def slugify(text: str | None) -> str:
    """
    Lower-case ASCII slug.

    Accents are stripped (NFKD + drop combining marks), runs of anything
    that is not a letter or digit collapse into one hyphen, and edge
    hyphens are trimmed. Text with nothing left falls back to
    "item-<base36 timestamp>".
    """
    normalized = unicodedata.normalize("NFKD", text or "")
    ascii_text = "".join(ch for ch in normalized if not unicodedata.combining(ch)).lower()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text).strip("-")
    if not slug:
        slug = f"item-{to_base36(int(time.time() * 1000))}"
    return slug


def unique_product_slug(name: str, *, exclude_id: int | None = None) -> str:
    """slugify(name), suffixed until no other product uses it."""
    base = slugify(name)
    candidate = base
    suffix = 2
    while True:
        query = db.session.query(Product.id).filter(Product.slug == candidate)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first() is None:
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1


def generate_sku() -> str:
    """
    SKU-<BASE36 ms timestamp>-<4 random base36 chars>, upper case.

    Raises RuntimeError if no free value is found after MAX_SKU_ATTEMPTS.
    """
    for _ in range(MAX_SKU_ATTEMPTS):
        stamp = to_base36(int(time.time() * 1000))
        rand = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(SKU_RANDOM_LENGTH))
        sku = f"SKU-{stamp}-{rand}".upper()
        if not db.session.query(Product.id).filter(Product.sku == sku).first():
            return sku
    raise RuntimeError("Could not generate a unique SKU")


def normalize_sku(value: str) -> str:
    """Normalize to uppercase, no spaces."""
    return value.upper().strip().replace(" ", "")
