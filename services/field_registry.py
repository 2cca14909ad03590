"""
Catalog field registry.

Maps a canonical field name (as stored in sync_field_mappings) to how the
value is pulled out of a catalog record and how it is rendered into and
parsed back from a sheet cell. The table is built once at import; adding a
field is a new entry, not a new branch.

Kinds are inferred from the field name:
    price / cost           -> "12.50"
    inventory_quantity     -> "12"
    *_at / *date*          -> configured date format and timezone
    weight (not unit)      -> "1.25"
    taxable                -> TRUE / FALSE
    anything else          -> str(); lists joined with ", "
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

TRUTHY = frozenset({"true", "1", "yes", "y", "on"})

KIND_PRICE = "price"
KIND_QUANTITY = "quantity"
KIND_DATE = "date"
KIND_WEIGHT = "weight"
KIND_BOOLEAN = "boolean"
KIND_TEXT = "text"

_NUMERIC_CHARS = re.compile(r"[^\d.\-]")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def kind_for(field: str) -> str:
    """Kind heuristic by field name. Order matters: compare_at_price is a price."""
    if "price" in field or "cost" in field:
        return KIND_PRICE
    if "inventory_quantity" in field or "inventoryQuantity" in field:
        return KIND_QUANTITY
    if "_at" in field or "date" in field.lower() or field.endswith("At"):
        return KIND_DATE
    if "weight" in field.lower() and "unit" not in field.lower():
        return KIND_WEIGHT
    if "taxable" in field:
        return KIND_BOOLEAN
    return KIND_TEXT


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# ===================
# FORMATTERS (record value -> cell)
# ===================

@dataclass(frozen=True)
class FormatOptions:
    """Per-shop formatting settings, fixed for a transformer's lifetime."""
    date_format: str = "%Y-%m-%d %H:%M:%S"
    timezone: str = "UTC"
    currency: str = "USD"

    @property
    def tzinfo(self):
        return ZoneInfo(self.timezone)


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def format_price(value: Any, options: FormatOptions) -> str:
    try:
        return f"{Decimal(str(value)):.2f}"
    except InvalidOperation:
        return "0.00"


def format_quantity(value: Any, options: FormatOptions) -> str:
    try:
        return str(int(Decimal(str(value))))
    except InvalidOperation:
        return str(value)


def format_date(value: Any, options: FormatOptions) -> str:
    moment = _coerce_datetime(value)
    if moment is None:
        return str(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment.astimezone(options.tzinfo).strftime(options.date_format)


def format_weight(value: Any, options: FormatOptions) -> str:
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return str(value)


def format_text(value: Any, options: FormatOptions) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


# ===================
# PARSERS (cell -> import value)
# ===================

def parse_price(value: str, options: FormatOptions) -> str:
    """
    Numeric string with currency symbols, codes and separators stripped.
    The sign is kept so negative prices can be rejected.

    Raises:
        ValueError: If nothing numeric remains
    """
    cleaned = _NUMERIC_CHARS.sub("", str(value).replace(options.currency, ""))
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")
    return str(amount)


def parse_quantity(value: str, options: FormatOptions) -> int:
    cleaned = str(value).strip().replace(",", "")
    try:
        return int(Decimal(cleaned))
    except InvalidOperation:
        raise ValueError(f"Not an integer: {value!r}")


def parse_date(value: str, options: FormatOptions) -> Optional[str]:
    """ISO-8601 string; naive cells are read in the shop's timezone."""
    text = str(value).strip()
    moment = _coerce_datetime(text)
    if moment is None:
        try:
            moment = datetime.strptime(text, options.date_format)
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=options.tzinfo)
    return moment.isoformat()


def parse_weight(value: str, options: FormatOptions) -> float:
    try:
        return float(str(value).strip().replace(",", ""))
    except ValueError:
        raise ValueError(f"Not a number: {value!r}")


def parse_boolean(value: str, options: FormatOptions) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def parse_text(value: str, options: FormatOptions) -> str:
    return str(value)


FORMATTERS: dict[str, Callable[[Any, FormatOptions], str]] = {
    KIND_PRICE: format_price,
    KIND_QUANTITY: format_quantity,
    KIND_DATE: format_date,
    KIND_WEIGHT: format_weight,
    KIND_BOOLEAN: format_text,
    KIND_TEXT: format_text,
}

PARSERS: dict[str, Callable[[str, FormatOptions], Any]] = {
    KIND_PRICE: parse_price,
    KIND_QUANTITY: parse_quantity,
    KIND_DATE: parse_date,
    KIND_WEIGHT: parse_weight,
    KIND_BOOLEAN: parse_boolean,
    KIND_TEXT: parse_text,
}


# ===================
# EXTRACTION
# ===================

def lookup(source: Any, key: str) -> Any:
    """Attribute or key lookup, tolerant of camelCase vs snake_case."""
    if source is None:
        return None
    if isinstance(source, dict):
        for candidate in (key, to_snake(key), to_camel(key)):
            if candidate in source:
                return source[candidate]
        return None
    if isinstance(source, (list, tuple)):
        if key.isdigit() and int(key) < len(source):
            return source[int(key)]
        return None
    for candidate in (key, to_snake(key)):
        if hasattr(source, candidate):
            return getattr(source, candidate)
    return None


def resolve_path(source: Any, path: str) -> Any:
    """Resolve "inventory_levels.0.available" style paths."""
    value = source
    for part in path.split("."):
        value = lookup(value, part)
        if value is None:
            return None
    return value


def format_options_text(record: Any) -> str:
    """Size: M / Color: Red"""
    options = lookup(record, "selected_options") or []
    parts = []
    for option in options:
        name = lookup(option, "name")
        value = lookup(option, "value")
        if name and value:
            parts.append(f"{name}: {value}")
    return " / ".join(parts)


@dataclass(frozen=True)
class FieldSpec:
    """How one canonical field is extracted, formatted and parsed."""
    name: str
    extract: Callable[[Any], Any]
    kind: str
    label: str
    record_key: Optional[str] = None

    def format(self, value: Any, options: FormatOptions) -> str:
        if value is None or value == "":
            return ""
        return FORMATTERS[self.kind](value, options)

    def parse(self, value: Any, options: FormatOptions) -> Any:
        """
        Raises:
            ValueError: If a numeric cell does not parse
        """
        if value is None or str(value).strip() == "":
            return None
        return PARSERS[self.kind](value, options)


def _attribute(name: str, key: str, label: Optional[str] = None) -> FieldSpec:
    return FieldSpec(
        name=name,
        extract=lambda record: lookup(record, key),
        kind=kind_for(name),
        label=label or name.replace("_", " ").title(),
        record_key=key,
    )


# Canonical name -> record attribute
ALIASES: dict[str, str] = {
    "product_title": "title",
    "product_handle": "handle",
    "product_description": "description",
    "product_vendor": "vendor",
    "product_type": "product_type",
    "product_tags": "tags",
    "product_status": "status",
    "variant_title": "variant_title",
    "variant_sku": "sku",
    "variant_barcode": "barcode",
    "variant_price": "price",
    "variant_compare_at_price": "compare_at_price",
    "variant_cost": "cost",
    "variant_inventory_quantity": "inventory_quantity",
    "variant_weight": "weight",
    "variant_weight_unit": "weight_unit",
    "variant_taxable": "taxable",
    "variant_tax_code": "tax_code",
    "product_created_at": "created_at",
    "product_updated_at": "updated_at",
    "product_published_at": "published_at",
    "variant_id": "id",
    "product_id": "product_id",
    "inventory_item_id": "inventory_item_id",
    "location_id": "location_id",
}


class FieldRegistry:
    """Canonical field name -> FieldSpec."""

    def __init__(self, specs: dict[str, FieldSpec]):
        self._specs = dict(specs)

    @classmethod
    def default(cls) -> "FieldRegistry":
        specs = {name: _attribute(name, key) for name, key in ALIASES.items()}
        specs["variant_options"] = FieldSpec(
            name="variant_options",
            extract=format_options_text,
            kind=KIND_TEXT,
            label="Variant Options",
        )
        specs["variant_sku"] = _attribute("variant_sku", "sku", label="Variant SKU")
        return cls(specs)

    def names(self) -> list[str]:
        return sorted(self._specs)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def get(self, name: str) -> FieldSpec:
        """Known alias, else a dotted path, else a plain key lookup."""
        spec = self._specs.get(name)
        if spec is not None:
            return spec
        if "." in name:
            return FieldSpec(
                name=name,
                extract=lambda record: resolve_path(record, name),
                kind=kind_for(name.rsplit(".", 1)[-1]),
                label=name,
            )
        return _attribute(name, name)


REGISTRY = FieldRegistry.default()
