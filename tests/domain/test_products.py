"""Tests for product drafts and catalog rules."""

import pytest

from plumbcat.domain.products import (
    ColorVariant,
    MeasurementVariant,
    Measurements,
    ProductDraft,
    collect_validation_issues,
    color_abbreviation,
    generate_sku_suggestion,
    generate_variant_sku,
    normalize_measurements,
    validate_product,
)


@pytest.fixture
def draft() -> ProductDraft:
    """A valid draft."""
    return ProductDraft(name="Grifo monomando", sku="GRF-100", category_id="cat-1")


class TestSkuHelpers:
    """Tests for SKU generation."""

    def test_known_colour_abbreviation(self) -> None:
        """Known colours use the fixed table."""
        assert color_abbreviation("Cromo") == "CR"
        assert color_abbreviation("Negro Mate") == "NM"

    def test_unknown_colour_abbreviation(self) -> None:
        """Unknown colours use their first two letters."""
        assert color_abbreviation("verde agua") == "VE"

    def test_variant_sku(self) -> None:
        """Variant SKUs append the colour abbreviation."""
        assert generate_variant_sku("GRF-100", "Negro Mate") == "GRF-100-NM"
        assert generate_variant_sku("", "Cromo") == ""

    def test_sku_suggestion(self) -> None:
        """Suggestions combine category, name and stamp."""
        assert generate_sku_suggestion("Grifo monomando", "banos", stamp="k3x9") == "BANO-GRIFOMO-K3X9"
        assert generate_sku_suggestion("Tee 1/2", None) == "PROD-TEE12"


class TestMeasurements:
    """Tests for measurement normalisation."""

    def test_legacy_sizes_become_variants(self) -> None:
        """Each non-empty legacy size becomes a numbered variant."""
        measurements = normalize_measurements(
            {"availableSizes": ["1/2", "3/4", " "], "unit": "pulgadas"}, "TUB-1"
        )
        assert measurements.enabled is True
        assert measurements.description == "pulgadas"
        assert [(v.size, v.sku) for v in measurements.variants] == [
            ("1/2", "TUB-1-1"),
            ("3/4", "TUB-1-2"),
        ]

    def test_canonical_shape_is_kept(self) -> None:
        """Canonical measurements pass through."""
        measurements = normalize_measurements(
            {"enabled": True, "variants": [{"size": "2m", "sku": "X-2", "active": False}]}
        )
        assert measurements.variants == [MeasurementVariant(size="2m", sku="X-2", active=False)]

    def test_empty_input(self) -> None:
        """None gives disabled measurements."""
        assert normalize_measurements(None) == Measurements()


class TestProductDraft:
    """Tests for ProductDraft."""

    def test_from_dict_accepts_nested_dicts(self) -> None:
        """Nested structures may be given as dictionaries."""
        draft = ProductDraft.from_dict(
            {
                "name": "Grifo",
                "sku": "GRF",
                "category_id": "c1",
                "attributes": [{"name": "Material", "value": "Latón"}],
                "color_variants": [{"colorName": "Cromo", "sku": "GRF-CR"}],
                "measurements": {"availableSizes": ["1/2"]},
                "unknown": "ignored",
            }
        )
        assert draft.attributes[0].value == "Latón"
        assert draft.color_variants[0].color_name == "Cromo"
        assert draft.color_variants[0].color_code == "#C0C0C0"
        assert draft.measurements.variants[0].sku == "GRF-1"

    def test_from_dict_drops_none_text(self) -> None:
        """None text fields fall back to defaults."""
        draft = ProductDraft.from_dict({"name": None, "description": None, "active": None})
        assert draft.name == ""
        assert draft.description == ""
        assert draft.active is True

    def test_merged_applies_changes(self, draft: ProductDraft) -> None:
        """Merging returns a new draft with the changes applied."""
        merged = draft.merged({"name": "Grifo nuevo", "featured": True})
        assert merged.name == "Grifo nuevo"
        assert merged.featured is True
        assert draft.name == "Grifo monomando"

    def test_all_skus(self, draft: ProductDraft) -> None:
        """Base SKU comes first, then colour and size SKUs."""
        draft.color_variants = [ColorVariant(color_name="Cromo", sku="GRF-100-CR")]
        draft.measurements = Measurements(
            enabled=True, variants=[MeasurementVariant(size="1/2", sku="GRF-100-1")]
        )
        assert draft.all_skus == ["GRF-100", "GRF-100-CR", "GRF-100-1"]

    def test_effective_slugs(self, draft: ProductDraft) -> None:
        """Slugs derive from name and brand when empty."""
        draft.brand = "Helvex Pro"
        assert draft.effective_slug() == "grifo-monomando"
        assert draft.effective_brand_slug() == "helvex-pro"
        assert ProductDraft().effective_slug() == "producto"

    def test_explicit_slugs_are_normalised(self, draft: ProductDraft) -> None:
        """Given slugs get the same cleanup as derived ones."""
        draft.slug = "Codo Ñandú 90°"
        draft.brand_slug = "Helvex PRO"
        assert draft.effective_slug() == "codo-nandu-90"
        assert draft.effective_brand_slug() == "helvex-pro"


class TestValidation:
    """Tests for catalog rules."""

    def test_valid_draft(self, draft: ProductDraft) -> None:
        """A complete draft has no issues."""
        assert validate_product(draft) == []

    def test_required_fields(self) -> None:
        """Name, SKU and category are required."""
        issues = collect_validation_issues(ProductDraft(name=" "))
        assert [i.field for i in issues] == ["name", "sku", "category_id"]
        assert validate_product(ProductDraft()) == [
            "name is required",
            "sku is required",
            "category is required",
        ]

    def test_colour_variant_sku_must_follow_pattern(self, draft: ProductDraft) -> None:
        """Colour variant SKUs must be the base SKU plus the abbreviation."""
        draft.default_image = "https://img.example.com/a.jpg"
        draft.color_variants = [ColorVariant(color_name="Cromo", sku="OTHER")]
        assert validate_product(draft) == [
            "color variant SKU 'OTHER' does not match the expected 'GRF-100-CR'"
        ]

    def test_duplicate_colour_variant_skus(self, draft: ProductDraft) -> None:
        """Two variants of the same colour clash."""
        draft.default_image = "https://img.example.com/a.jpg"
        draft.color_variants = [
            ColorVariant(color_name="Cromo", sku="GRF-100-CR"),
            ColorVariant(color_name="Cromo", sku="GRF-100-CR"),
        ]
        assert "color variant SKUs must be unique" in validate_product(draft)

    def test_colour_variant_needs_an_image(self, draft: ProductDraft) -> None:
        """Without a default image every variant needs its own."""
        draft.color_variants = [ColorVariant(color_name="Cromo", sku="GRF-100-CR")]
        assert validate_product(draft) == [
            "color variants need their own image or a default image"
        ]

        draft.color_variants[0].image = "https://img.example.com/cr.jpg"
        assert validate_product(draft) == []

    def test_colour_code_must_be_hex(self, draft: ProductDraft) -> None:
        """Colour codes must be hex colours."""
        draft.color_variants = [
            ColorVariant(color_name="Cromo", color_code="silver", sku="GRF-100-CR", image="x")
        ]
        assert validate_product(draft) == ["color code 'silver' is not a hex color"]

    def test_enabled_measurements_need_variants(self, draft: ProductDraft) -> None:
        """Enabled measurements without variants are rejected."""
        draft.measurements = Measurements(enabled=True)
        assert validate_product(draft) == [
            "measurements are enabled but no size variant was given"
        ]

    def test_size_variant_needs_size_and_sku(self, draft: ProductDraft) -> None:
        """Every size variant needs a size and a SKU."""
        draft.measurements = Measurements(enabled=True, variants=[MeasurementVariant(size="")])
        assert validate_product(draft) == [
            "size variant needs a size",
            "size variant needs a SKU",
        ]

    def test_variant_sku_equal_to_base(self, draft: ProductDraft) -> None:
        """A size variant cannot reuse the base SKU."""
        draft.measurements = Measurements(
            enabled=True, variants=[MeasurementVariant(size="1/2", sku="GRF-100")]
        )
        assert validate_product(draft) == ["variant SKUs must differ from the base SKU"]

    def test_size_and_colour_skus_collide(self, draft: ProductDraft) -> None:
        """Size and colour SKUs share one namespace."""
        draft.default_image = "https://img.example.com/a.jpg"
        draft.color_variants = [ColorVariant(color_name="Cromo", sku="GRF-100-CR")]
        draft.measurements = Measurements(
            enabled=True, variants=[MeasurementVariant(size="1/2", sku="GRF-100-CR")]
        )
        assert validate_product(draft) == [
            "size variant SKUs must differ from color variant SKUs"
        ]

    def test_validation_is_deterministic(self, draft: ProductDraft) -> None:
        """The same input gives the same messages."""
        draft.sku = ""
        draft.measurements = Measurements(enabled=True)
        assert validate_product(draft) == validate_product(draft)
