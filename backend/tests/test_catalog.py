from __future__ import annotations

import pytest

from app.services.catalog import ProductCatalog, parse_product_tier_map


def test_parse_accepts_equals_and_colon_separators():
    mapping = parse_product_tier_map("a.month=lite, b.month:PRO ,,broken")
    assert mapping == {"a.month": "lite", "b.month": "pro"}


def test_invalid_tier_is_a_configuration_error():
    with pytest.raises(ValueError):
        parse_product_tier_map("a.month=gold")


def test_unmapped_product_has_no_default_tier():
    catalog = ProductCatalog({"a.month": "standard"})
    assert catalog.resolve_tier("a.month") == "standard"
    assert catalog.resolve_tier("b.month") is None
    assert "b.month" not in catalog


def test_default_catalog_covers_every_paid_tier(catalog):
    tiers = {catalog.resolve_tier(p) for p in (
        "com.example.vault.lite.month",
        "com.example.vault.standard.month",
        "com.example.vault.pro.month",
        "com.example.vault.addon.50gb.month",
    )}
    assert tiers == {"lite", "standard", "pro", "addon"}
