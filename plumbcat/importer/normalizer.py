"""Row normalisation for bulk imports.

Turns a raw feed row (CSV cells or a JSON object, in any of the layouts
the catalog has used over time) into a :class:`ProductDraft`.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from plumbcat.domain.products import (
    COLOR_PALETTE,
    ColorVariant,
    Measurements,
    ProductAttribute,
    ProductDraft,
    generate_variant_sku,
    normalize_measurements,
)
from plumbcat.domain.values import coerce_bool

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "_id", "productId", "product_id"),
    "name": ("name", "nombre"),
    "sku": ("sku", "SKU"),
    "slug": ("slug",),
    "category_id": ("category_id", "categoryId", "category", "suggestedCategory"),
    "description": ("description", "descripcion"),
    "brand": ("brand", "marca"),
    "brand_slug": ("brand_slug", "brandSlug"),
    "attributes": ("attributes", "characteristics"),
    "specifications": ("specifications",),
    "images": ("images", "gallery"),
    "default_image": ("default_image", "defaultImage", "image"),
    "active": ("active",),
    "featured": ("featured",),
    "color_variants": ("color_variants", "colorVariants"),
    "measurements": ("measurements",),
}

MEASUREMENT_COLUMNS: dict[str, tuple[str, ...]] = {
    "enabled": ("measurementsEnabled", "measurements_enabled"),
    "variants": ("measurementsVariants", "measurements_variants"),
    "description": ("measurementsDescription", "measurements_description"),
    "available_sizes": ("availableSizes", "available_sizes"),
    "unit": ("unit",),
}


@dataclass
class NormalizedRow:
    """Result of normalising one feed row.

    Attributes:
        row_number: 1-based position in the feed.
        draft: Canonical draft, None when the row cannot be interpreted.
        product_id: Existing product to update, when the row carries an id.
        category_ref: Category reference exactly as given in the feed.
        provided: Draft fields the row actually set.
        errors: Problems that prevent writing the row.
        warnings: Problems that were worked around.
    """

    row_number: int
    draft: ProductDraft | None = None
    product_id: str | None = None
    category_ref: str | None = None
    provided: set[str] = field(default_factory=set)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.draft is not None and not self.errors


def is_valid_id(value: Any) -> bool:
    """Whether ``value`` is a structurally valid record id (a UUID)."""
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _pick(raw: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        if key in raw and _present(raw[key]):
            return raw[key]
    return None


def _load_json(value: Any, label: str, row: NormalizedRow) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        row.errors.append(f"{label} is not valid JSON")
        return None


def _split_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if _present(v)]
    text = str(value).strip()
    if text.startswith("["):
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError:
            loaded = None
        if isinstance(loaded, list):
            return [str(v).strip() for v in loaded if _present(v)]
    return [part.strip() for part in text.replace("\n", ",").split(",") if part.strip()]


def _attributes(value: Any, row: NormalizedRow) -> list[ProductAttribute]:
    value = _load_json(value, "attributes", row)
    if value is None:
        return []
    if isinstance(value, dict):
        return [ProductAttribute(name=str(k), value=str(v)) for k, v in value.items()]
    attributes = []
    for item in value if isinstance(value, list) else []:
        if isinstance(item, dict) and _present(item.get("name")):
            attributes.append(
                ProductAttribute(name=str(item["name"]).strip(), value=str(item.get("value", "")).strip())
            )
    return attributes


def _specifications(value: Any, row: NormalizedRow) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    try:
        loaded = json.loads(value) if isinstance(value, str) else value
    except json.JSONDecodeError:
        row.warnings.append("specifications are not valid JSON; stored as text")
        return {"text": str(value)}
    if isinstance(loaded, dict):
        return loaded
    return {"text": str(value)}


def _color_variants(value: Any, base_sku: str, row: NormalizedRow) -> list[ColorVariant]:
    value = _load_json(value, "color variants", row)
    if value is None:
        return []
    if not isinstance(value, list):
        row.errors.append("color variants must be a list")
        return []

    variants = []
    for item in value:
        if not isinstance(item, dict):
            row.errors.append("color variant entries must be objects")
            continue
        color_name = str(item.get("color_name") or item.get("colorName") or "").strip()
        sku = str(item.get("sku") or "").strip() or generate_variant_sku(base_sku, color_name)
        variants.append(
            ColorVariant(
                color_name=color_name,
                color_code=str(
                    item.get("color_code") or item.get("colorCode") or COLOR_PALETTE.get(color_name, "")
                ),
                image=item.get("image") or None,
                sku=sku,
                active=coerce_bool(item.get("active"), default=True),
            )
        )
    return variants


def _measurements(raw: dict[str, Any], base_sku: str, row: NormalizedRow) -> Measurements | None:
    nested = _pick(raw, FIELD_ALIASES["measurements"])
    if nested is not None:
        nested = _load_json(nested, "measurements", row)
        if nested is None:
            return None
        if not isinstance(nested, dict):
            row.errors.append("measurements must be an object")
            return None
        if "variants" not in nested and nested.get("availableSizes"):
            row.warnings.append("legacy size list converted to size variants")
        return normalize_measurements(nested, base_sku)

    columns = {key: _pick(raw, aliases) for key, aliases in MEASUREMENT_COLUMNS.items()}

    if columns["variants"] is not None or columns["enabled"] is not None:
        variants = _load_json(columns["variants"], "measurements variants", row) or []
        if not isinstance(variants, list):
            row.errors.append("measurements variants must be a list")
            variants = []
        measurements = normalize_measurements(
            {
                "enabled": coerce_bool(columns["enabled"], default=bool(variants)),
                "description": columns["description"] or "",
                "variants": [v for v in variants if isinstance(v, dict)],
            },
            base_sku,
        )
        for index, variant in enumerate(measurements.variants, start=1):
            if not variant.sku:
                variant.sku = f"{base_sku or 'PROD'}-{index}"
        return measurements

    if columns["available_sizes"] is not None:
        row.warnings.append("legacy size list converted to size variants")
        return normalize_measurements(
            {
                "availableSizes": _split_list(columns["available_sizes"]),
                "unit": columns["unit"] or "",
            },
            base_sku,
        )
    return None


def normalize_row(raw: dict[str, Any], row_number: int) -> NormalizedRow:
    """Normalise one feed row.

    Args:
        raw: Row as parsed from the feed.
        row_number: 1-based position in the feed.

    Returns:
        The normalised row; check ``errors`` before using the draft.
    """
    row = NormalizedRow(row_number=row_number)
    values: dict[str, Any] = {}

    raw_id = _pick(raw, FIELD_ALIASES["id"])
    if raw_id is not None:
        if is_valid_id(raw_id):
            row.product_id = str(raw_id).strip()
        else:
            row.errors.append(f"id '{raw_id}' is not a valid product id")

    for name in ("name", "sku", "slug", "description", "brand", "brand_slug", "default_image"):
        value = _pick(raw, FIELD_ALIASES[name])
        if value is not None:
            values[name] = str(value).strip()

    category_ref = _pick(raw, FIELD_ALIASES["category_id"])
    if category_ref is not None:
        row.category_ref = str(category_ref).strip()
        values["category_id"] = row.category_ref

    for name in ("active", "featured"):
        value = _pick(raw, FIELD_ALIASES[name])
        if value is not None:
            values[name] = coerce_bool(value, default=(name == "active"))

    base_sku = values.get("sku", "")

    images = _pick(raw, FIELD_ALIASES["images"])
    if images is not None:
        values["images"] = _split_list(images)

    attributes = _pick(raw, FIELD_ALIASES["attributes"])
    if attributes is not None:
        values["attributes"] = _attributes(attributes, row)

    specifications = _pick(raw, FIELD_ALIASES["specifications"])
    if specifications is not None:
        values["specifications"] = _specifications(specifications, row)

    color_variants = _pick(raw, FIELD_ALIASES["color_variants"])
    if color_variants is not None:
        values["color_variants"] = _color_variants(color_variants, base_sku, row)

    measurements = _measurements(raw, base_sku, row)
    if measurements is not None:
        values["measurements"] = measurements

    if len(values.get("name", "")) > MAX_NAME_LENGTH:
        row.warnings.append(f"name is longer than {MAX_NAME_LENGTH} characters")
    if len(values.get("description", "")) > MAX_DESCRIPTION_LENGTH:
        row.warnings.append(f"description is longer than {MAX_DESCRIPTION_LENGTH} characters")

    for url in [values.get("default_image"), *values.get("images", [])]:
        if url and not url.startswith(("http://", "https://")):
            row.warnings.append(f"image URL '{url}' does not look like a web address")

    row.provided = set(values)
    if row.errors:
        return row

    row.draft = ProductDraft.from_dict(values)
    return row
