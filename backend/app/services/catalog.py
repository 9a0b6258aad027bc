from __future__ import annotations

VALID_TIERS = {"lite", "standard", "pro", "addon"}


def _normalize_tier(tier: str | None) -> str:
    raw = (tier or "").strip().lower()
    if raw not in VALID_TIERS:
        raise ValueError(f"tier invalido: {tier!r}")
    return raw


def parse_product_tier_map(raw: str | None) -> dict[str, str]:
    out: dict[str, str] = {}
    raw = (raw or "").strip()
    if not raw:
        return out
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    for item in parts:
        sep = "=" if "=" in item else ":"
        if sep not in item:
            continue
        product_id, tier = [x.strip() for x in item.split(sep, 1)]
        if product_id:
            out[product_id] = _normalize_tier(tier)
    return out


class ProductCatalog:
    """Static product id -> tier table. Unmapped products never get a default tier."""

    def __init__(self, mapping: dict[str, str]):
        self._mapping = {pid: _normalize_tier(tier) for pid, tier in mapping.items()}

    @classmethod
    def from_config(cls, raw: str | None) -> "ProductCatalog":
        return cls(parse_product_tier_map(raw))

    def resolve_tier(self, product_id: str) -> str | None:
        return self._mapping.get((product_id or "").strip())

    def __contains__(self, product_id: str) -> bool:
        return self.resolve_tier(product_id) is not None
