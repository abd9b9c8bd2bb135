"""Product drafts and the catalog rules that apply to them.

Everything here is pure: the same ``validate_product`` runs behind the
admin form endpoint, the store's write path and the bulk importer, so
identical input always produces identical messages.
"""

import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from plumbcat.domain.categories import slugify

# ============================================================================
# Colour tables
# ============================================================================

COLOR_ABBREVIATIONS: dict[str, str] = {
    "Blanco Cromo": "BC",
    "Gris Cromo": "GC",
    "Negro": "N",
    "Negro Cromo": "NC",
    "Negro Mate": "NM",
    "Rojo Cromo": "RC",
    "Satin Greystone": "SG",
    "Acero": "AC",
    "Acero Inoxidable": "AI",
    "Aluminio": "AL",
    "Black": "BL",
    "Blanco": "B",
    "Bronce": "BR",
    "Brushed Brass": "BB",
    "Cromo": "CR",
    "Negro / Cromo": "N/C",
    "Niquel": "NI",
    "Oro": "O",
    "Peltre / Oro": "P/O",
    "Platil / Cromo": "PL/C",
    "Polished Brass": "PB",
    "Rose Gold": "RG",
}

COLOR_PALETTE: dict[str, str] = {
    "Blanco": "#FFFFFF",
    "Negro": "#000000",
    "Negro Mate": "#28282B",
    "Cromo": "#C0C0C0",
    "Acero": "#71797E",
    "Acero Inoxidable": "#B4B4B4",
    "Aluminio": "#A8A9AD",
    "Bronce": "#CD7F32",
    "Oro": "#FFD700",
    "Rose Gold": "#B76E79",
    "Niquel": "#727472",
    "Brushed Brass": "#B5A642",
    "Polished Brass": "#D4AF37",
}
"""Default hex codes used when a feed names a colour without a code."""

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


def color_abbreviation(color_name: str) -> str:
    """Abbreviation used in colour-variant SKUs.

    Known colours use the fixed table; anything else uses its first two
    letters upper-cased.
    """
    name = (color_name or "").strip()
    if name in COLOR_ABBREVIATIONS:
        return COLOR_ABBREVIATIONS[name]
    return name[:2].upper()


def generate_variant_sku(base_sku: str, color_name: str) -> str:
    """Build ``{base_sku}-{abbreviation}``; empty when there is no base SKU."""
    if not base_sku:
        return ""
    return f"{base_sku}-{color_abbreviation(color_name)}"


def generate_measurement_sku(base_sku: str | None, index: int) -> str:
    """Build ``{base_sku}-{index}`` for an auto-generated size variant."""
    return f"{base_sku or 'PROD'}-{index}"


# ============================================================================
# Draft types
# ============================================================================


@dataclass
class ProductAttribute:
    """One ``{name, value}`` pair; order and repeated names are kept."""

    name: str
    value: str


@dataclass
class ColorVariant:
    """Colour variant of a product."""

    color_name: str
    color_code: str = ""
    image: str | None = None
    sku: str = ""
    active: bool = True


@dataclass
class MeasurementVariant:
    """Size variant of a product."""

    size: str
    sku: str = ""
    active: bool = True


@dataclass
class Measurements:
    """Size options of a product."""

    enabled: bool = False
    description: str = ""
    variants: list[MeasurementVariant] = field(default_factory=list)

    @property
    def skus(self) -> list[str]:
        return [v.sku for v in self.variants if v.sku]


@dataclass
class ProductDraft:
    """Product as submitted by the admin form, the API or an import row.

    Attributes:
        name: Display name (required).
        sku: Base SKU (required, unique across the SKU namespace).
        category_id: Deepest category the product belongs to (required).
        slug: Explicit slug, derived from the name when empty.
        description: Long description.
        brand: Brand display name.
        brand_slug: Brand slug, derived from brand when empty.
        attributes: Ordered name/value pairs.
        specifications: Free-form technical data.
        images: Gallery image URLs in display order.
        default_image: Fallback image for variants without one.
        active: Visible in the storefront.
        featured: Shown on the home page.
        color_variants: Colour variants in display order.
        measurements: Size variants.
    """

    name: str = ""
    sku: str = ""
    category_id: str | None = None
    slug: str | None = None
    description: str = ""
    brand: str = ""
    brand_slug: str = ""
    attributes: list[ProductAttribute] = field(default_factory=list)
    specifications: dict[str, Any] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)
    default_image: str | None = None
    active: bool = True
    featured: bool = False
    color_variants: list[ColorVariant] = field(default_factory=list)
    measurements: Measurements = field(default_factory=Measurements)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductDraft":
        """Build a draft from a snake_case dictionary.

        Unknown keys are ignored. Nested structures may be given as
        dictionaries; ``measurements`` may use the legacy size-list shape.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        values["attributes"] = [
            a if isinstance(a, ProductAttribute)
            else ProductAttribute(name=str(a.get("name", "")), value=str(a.get("value", "")))
            for a in values.get("attributes") or []
        ]
        values["color_variants"] = [
            v if isinstance(v, ColorVariant) else _color_variant_from_dict(v)
            for v in values.get("color_variants") or []
        ]
        measurements = values.get("measurements")
        if not isinstance(measurements, Measurements):
            values["measurements"] = normalize_measurements(measurements, data.get("sku"))
        values["images"] = list(values.get("images") or [])
        values["specifications"] = dict(values.get("specifications") or {})
        for name in ("name", "sku", "description", "brand", "brand_slug", "active", "featured"):
            if name in values and values[name] is None:
                values.pop(name)
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return asdict(self)

    def merged(self, changes: dict[str, Any]) -> "ProductDraft":
        """Return a new draft with ``changes`` applied on top of this one."""
        return ProductDraft.from_dict({**self.to_dict(), **changes})

    @property
    def variant_skus(self) -> list[str]:
        """SKUs of all colour and size variants."""
        return [v.sku for v in self.color_variants if v.sku] + self.measurements.skus

    @property
    def all_skus(self) -> list[str]:
        """Base SKU followed by every variant SKU."""
        base = [self.sku] if self.sku else []
        return base + self.variant_skus

    def effective_slug(self) -> str:
        return slugify(self.slug or self.name, fallback="producto")

    def effective_brand_slug(self) -> str:
        source = self.brand_slug or self.brand
        return slugify(source, fallback="") if source else ""


def _color_variant_from_dict(data: dict[str, Any]) -> ColorVariant:
    color_name = str(data.get("color_name") or data.get("colorName") or "").strip()
    return ColorVariant(
        color_name=color_name,
        color_code=str(data.get("color_code") or data.get("colorCode") or COLOR_PALETTE.get(color_name, "")),
        image=data.get("image") or None,
        sku=str(data.get("sku") or "").strip(),
        active=data.get("active", True) is not False,
    )


def normalize_measurements(raw: Any, base_sku: str | None = None) -> Measurements:
    """Reshape stored or legacy measurements into :class:`Measurements`.

    Legacy documents carry ``availableSizes`` (and a ``unit``) instead of
    variants; each non-empty size becomes a variant with SKU
    ``{base_sku}-{index}``.

    Args:
        raw: Stored measurements, legacy measurements or None.
        base_sku: Product SKU used to number generated variants.

    Returns:
        Canonical measurements.
    """
    if isinstance(raw, Measurements):
        return raw
    if not raw or not isinstance(raw, dict):
        return Measurements()

    if "variants" in raw:
        variants = []
        for item in raw.get("variants") or []:
            if isinstance(item, MeasurementVariant):
                variants.append(item)
                continue
            variants.append(
                MeasurementVariant(
                    size=str(item.get("size") or "").strip(),
                    sku=str(item.get("sku") or "").strip(),
                    active=item.get("active", True) is not False,
                )
            )
        return Measurements(
            enabled=bool(raw.get("enabled", False)),
            description=str(raw.get("description") or ""),
            variants=variants,
        )

    sizes = [
        str(size).strip()
        for size in raw.get("availableSizes") or raw.get("available_sizes") or []
        if str(size).strip()
    ]
    return Measurements(
        enabled=bool(sizes),
        description=str(raw.get("description") or raw.get("unit") or ""),
        variants=[
            MeasurementVariant(size=size, sku=generate_measurement_sku(base_sku, i))
            for i, size in enumerate(sizes, start=1)
        ],
    )


def generate_sku_suggestion(name: str, category_slug: str | None = None, stamp: str = "") -> str:
    """Suggest a base SKU the admin may edit.

    Format ``CATE-NAME-STAMP``: first four letters of the category slug,
    the first eight characters of the name reduced to ``A-Z0-9`` and a
    short stamp supplied by the caller.
    """
    prefix = (category_slug or "PROD")[:4].upper()
    name_part = re.sub(r"[^A-Z0-9]", "", (name or "")[:8].upper())
    parts = [prefix, name_part]
    if stamp:
        parts.append(stamp.upper())
    return "-".join(p for p in parts if p)


# ============================================================================
# Validation
# ============================================================================


@dataclass
class FieldError:
    """A validation problem tied to a form field."""

    field: str | None
    message: str

    def to_dict(self) -> dict[str, str | None]:
        return {"field": self.field, "message": self.message}


def collect_validation_issues(draft: ProductDraft) -> list[FieldError]:
    """Check a draft against every catalog rule.

    Args:
        draft: Product to check.

    Returns:
        Problems found, in a stable order; empty when the draft is valid.
    """
    issues: list[FieldError] = []

    if not draft.name or not draft.name.strip():
        issues.append(FieldError("name", "name is required"))
    if not draft.sku or not draft.sku.strip():
        issues.append(FieldError("sku", "sku is required"))
    if not draft.category_id:
        issues.append(FieldError("category_id", "category is required"))

    if draft.color_variants:
        variant_skus = [v.sku for v in draft.color_variants if v.sku]
        if len(variant_skus) != len(set(variant_skus)):
            issues.append(
                FieldError("color_variants", "color variant SKUs must be unique")
            )

        if draft.sku:
            for index, variant in enumerate(draft.color_variants):
                expected = generate_variant_sku(draft.sku, variant.color_name)
                if variant.sku != expected:
                    issues.append(
                        FieldError(
                            f"color_variants[{index}].sku",
                            f"color variant SKU '{variant.sku}' does not match the expected '{expected}'",
                        )
                    )

        for index, variant in enumerate(draft.color_variants):
            if not variant.color_name:
                issues.append(
                    FieldError(f"color_variants[{index}].color_name", "color variant needs a color name")
                )
            if variant.color_code and not _HEX_COLOR.match(variant.color_code):
                issues.append(
                    FieldError(
                        f"color_variants[{index}].color_code",
                        f"color code '{variant.color_code}' is not a hex color",
                    )
                )

        if any(not v.image for v in draft.color_variants) and not draft.default_image:
            issues.append(
                FieldError(
                    "default_image",
                    "color variants need their own image or a default image",
                )
            )

    measurements = draft.measurements
    if measurements.enabled:
        if not measurements.variants:
            issues.append(
                FieldError(
                    "measurements.variants",
                    "measurements are enabled but no size variant was given",
                )
            )
        for index, variant in enumerate(measurements.variants):
            if not variant.size:
                issues.append(
                    FieldError(f"measurements.variants[{index}].size", "size variant needs a size")
                )
            if not variant.sku:
                issues.append(
                    FieldError(f"measurements.variants[{index}].sku", "size variant needs a SKU")
                )
        size_skus = measurements.skus
        if len(size_skus) != len(set(size_skus)):
            issues.append(
                FieldError("measurements.variants", "size variant SKUs must be unique")
            )

    if draft.sku and draft.sku in draft.variant_skus:
        issues.append(FieldError("sku", "variant SKUs must differ from the base SKU"))
    color_skus = {v.sku for v in draft.color_variants if v.sku}
    if color_skus & set(measurements.skus):
        issues.append(
            FieldError("measurements.variants", "size variant SKUs must differ from color variant SKUs")
        )

    return issues


def validate_product(draft: ProductDraft) -> list[str]:
    """Validate a draft and return human-readable messages (empty when valid)."""
    return [issue.message for issue in collect_validation_issues(draft)]
