"""Decode response bodies and project items into NormalizedRecords."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from json import JSONDecodeError
from typing import Any

from charset_normalizer import from_bytes

from errors import EncodingError, MalformedRecord, PayloadError
from models import NormalizedPage, NormalizedRecord, RecordType

LOGGER = logging.getLogger(__name__)

_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)

_ITEM_KEYS = ("items", "results", "data")
_HAS_MORE_KEYS = ("has_next", "hasNext", "has_more", "hasMore")
_NEXT_KEYS = ("next", "next_page", "nextPage")


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    required: bool = False
    default: Any = None
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RecordSchema:
    record_type: RecordType
    id_field: str
    fields: tuple[FieldSpec, ...]

    @property
    def field_names(self) -> list[str]:
        return [spec.name for spec in self.fields]


RECORD_SCHEMAS: dict[RecordType, RecordSchema] = {
    RecordType.SEARCH_RESULT: RecordSchema(
        record_type=RecordType.SEARCH_RESULT,
        id_field="link",
        fields=(
            FieldSpec("title", required=True),
            FieldSpec("link", required=True, aliases=("url",)),
            FieldSpec("description", default="", aliases=("snippet",)),
            FieldSpec("source", default=""),
            FieldSpec("position", default=None, aliases=("rank",)),
        ),
    ),
    RecordType.PRODUCT: RecordSchema(
        record_type=RecordType.PRODUCT,
        id_field="product_id",
        fields=(
            FieldSpec("product_id", required=True, aliases=("productId", "id")),
            FieldSpec("title", required=True, aliases=("name",)),
            FieldSpec("price", default=None, aliases=("lprice",)),
            FieldSpec("currency", default="KRW"),
            FieldSpec("mall_name", default="", aliases=("mallName", "seller")),
            FieldSpec("brand", default=""),
            FieldSpec("category", default="", aliases=("category1",)),
            FieldSpec("link", default="", aliases=("url",)),
            FieldSpec("image", default="", aliases=("image_url", "imageUrl")),
            FieldSpec("rating", default=None),
            FieldSpec("review_count", default=0, aliases=("reviewCount",)),
        ),
    ),
    RecordType.ARTICLE: RecordSchema(
        record_type=RecordType.ARTICLE,
        id_field="link",
        fields=(
            FieldSpec("title", required=True),
            FieldSpec("link", required=True, aliases=("url", "originallink")),
            FieldSpec("press", default="", aliases=("publisher",)),
            FieldSpec("summary", default="", aliases=("description",)),
            FieldSpec("author", default=""),
            FieldSpec("published_at", default=None, aliases=("pubDate", "publishedAt")),
        ),
    ),
    RecordType.LISTING: RecordSchema(
        record_type=RecordType.LISTING,
        id_field="listing_id",
        fields=(
            FieldSpec("listing_id", required=True, aliases=("listingId", "id")),
            FieldSpec("title", required=True),
            FieldSpec("price", default=None),
            FieldSpec("location", default="", aliases=("address",)),
            FieldSpec("seller", default=""),
            FieldSpec("posted_at", default=None, aliases=("postedAt",)),
            FieldSpec("link", default="", aliases=("url",)),
        ),
    ),
}


def decode_body(body: bytes, declared_encoding: str | None = None) -> str:
    """Decode a response body, falling back to BOM sniffing, UTF-8 and detection.

    Raises:
        EncodingError: nothing could decode the body cleanly.
    """
    if not body:
        return ""

    if declared_encoding:
        try:
            return body.decode(declared_encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            LOGGER.warning("Declared encoding %s failed, detecting instead: %s", declared_encoding, exc)

    for bom, encoding in _BOMS:
        if body.startswith(bom):
            try:
                return body.decode(encoding)
            except UnicodeDecodeError:
                break

    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        pass

    best = from_bytes(body).best()
    if best is None:
        raise EncodingError(f"Could not detect encoding of {len(body)} byte body")
    LOGGER.info("Detected response encoding %s", best.encoding)
    return str(best)


def parse_payload(text: str) -> Any:
    try:
        return json.loads(text)
    except JSONDecodeError as exc:
        raise PayloadError(f"Response body is not valid JSON: {exc}") from exc


def normalize(
    body: bytes,
    record_type: RecordType | str,
    declared_encoding: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> NormalizedPage:
    """Decode, parse and project one page of results.

    Items missing a required field are dropped individually and returned in
    ``NormalizedPage.dropped``; the rest of the page is kept.
    """
    schema = RECORD_SCHEMAS[RecordType(record_type)]
    text = decode_body(body, declared_encoding)
    if not text.strip():
        # 204 No Content or a blank body ends the run.
        return NormalizedPage(records=(), has_more=False)
    payload = parse_payload(text)
    items = extract_items(payload)

    records: list[NormalizedRecord] = []
    dropped: list[MalformedRecord] = []
    for item in items:
        try:
            records.append(project_item(item, schema))
        except MalformedRecord as exc:
            dropped.append(exc)

    return NormalizedPage(
        records=tuple(records),
        dropped=tuple(dropped),
        has_more=_has_more(payload, page=page, page_size=page_size, item_count=len(items)),
    )


def extract_items(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise PayloadError(f"Unexpected payload shape: expected an object or list, got {type(payload).__name__}")

    for key in _ITEM_KEYS:
        items = payload.get(key)
        if isinstance(items, list):
            return items
    raise PayloadError(f"Unexpected payload shape: none of {', '.join(_ITEM_KEYS)} is a list")


def project_item(item: Any, schema: RecordSchema) -> NormalizedRecord:
    """Project one raw item through a record schema, filling defaults."""
    if not isinstance(item, dict):
        raise MalformedRecord(schema.record_type.value, schema.field_names, item)

    fields: dict[str, Any] = {}
    missing: list[str] = []
    for spec in schema.fields:
        value = _lookup(item, spec)
        if value is None:
            if spec.required:
                missing.append(spec.name)
            value = spec.default
        fields[spec.name] = value

    if missing:
        raise MalformedRecord(schema.record_type.value, missing, item)

    return NormalizedRecord(
        record_type=schema.record_type,
        fields=fields,
        record_id=str(fields[schema.id_field]),
    )


def _lookup(item: dict[str, Any], spec: FieldSpec) -> Any:
    for key in (spec.name, *spec.aliases):
        value = item.get(key)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        if value is not None:
            return value
    return None


def _has_more(payload: Any, page: int | None, page_size: int | None, item_count: int) -> bool:
    if not isinstance(payload, dict) or item_count == 0:
        return False

    blocks = [payload]
    if isinstance(payload.get("pagination"), dict):
        blocks.append(payload["pagination"])

    for block in blocks:
        for key in _HAS_MORE_KEYS:
            if key in block:
                return bool(block[key])
        for key in _NEXT_KEYS:
            if key in block:
                return block[key] not in (None, "", False)

    total = payload.get("total")
    if isinstance(total, int) and page is not None:
        if page_size is not None and item_count < page_size:
            return False
        size = page_size or item_count
        return page * size < total
    return False
