"""Page index generation.

Pure functions turning crawled pages, their component data and the resolved
content into one searchable `PageIndexRecord` per page.
"""

import html
import re
from typing import Any, Iterable, Iterator, Mapping, Sequence

from src.constants import KEYWORD_CHUNK_MAX_BYTES
from src.models.component_models import ComponentInstance, ComponentKind
from src.models.content_models import ContentItem, TypeTextField
from src.models.index_models import PageIndexRecord
from src.models.site_models import Page, PageData

_TAG_RE = re.compile(r"<[^>]*>")

# Entities replaced by a space before splitting
_SPACE_ENTITIES = ("&nbsp;", "&ldquo;", "&rdquo;")


def strip_html_tags(text: str) -> str:
    """Drop markup and the few entities the editors emit into plain spaces."""
    text = _TAG_RE.sub("", text)
    for entity in _SPACE_ENTITIES:
        text = text.replace(entity, " ")
    return text.replace("\n", " ")


def _split_oversized(word: str, max_bytes: int) -> Iterator[str]:
    """Yield `word` in pieces of at most `max_bytes`, never splitting a character."""
    if len(word.encode("utf-8")) <= max_bytes:
        yield word
        return
    piece = ""
    size = 0
    for char in word:
        char_size = len(char.encode("utf-8"))
        if size + char_size > max_bytes:
            yield piece
            piece, size = "", 0
        piece += char
        size += char_size
    if piece:
        yield piece


def split_keywords(text: str, max_bytes: int = KEYWORD_CHUNK_MAX_BYTES) -> list[str]:
    """
    Pack the words of `text` into keyword values of at most `max_bytes`.

    Words are appended greedily with a single separating space; a value is
    flushed as soon as the next word (plus its space) would not fit.

    Args:
        text: Harvested text, possibly containing markup
        max_bytes: Byte budget per value, UTF-8 encoded

    Returns:
        Keyword values, in text order
    """
    chunks: list[str] = []
    line = ""
    size = 0
    for word in strip_html_tags(text).split():
        for piece in _split_oversized(word, max_bytes):
            piece_size = len(piece.encode("utf-8"))
            if not line:
                line, size = piece, piece_size
            elif size + 1 + piece_size > max_bytes:
                chunks.append(line)
                line, size = piece, piece_size
            else:
                line = f"{line} {piece}"
                size += 1 + piece_size
    if line:
        chunks.append(line)
    return chunks


def _values(data: Mapping[str, Any], *names: str) -> list[str]:
    return [str(data[name]) for name in names if data.get(name)]


def component_text(instance: ComponentInstance) -> list[str]:
    """Text a component contributes to its page's keywords."""
    data = instance.data
    match instance.kind:
        case ComponentKind.PARAGRAPH | ComponentKind.TITLE:
            return _values(data, "userText")
        case ComponentKind.INLINE_TEXT:
            return _values(data, "innerHTML")
        case ComponentKind.BUTTON:
            return _values(data, "text", "title")
        case ComponentKind.IMAGE:
            return _values(data, "altText", "title", "description")
        case ComponentKind.GALLERY:
            texts: list[str] = []
            for image in data.get("images") or []:
                if isinstance(image, dict):
                    texts.extend(_values(image, "altText", "description", "title"))
            return texts
        case ComponentKind.CONTENT_LIST | ComponentKind.OTHER:
            # Content lists contribute through their resolved items
            return []


def _field_text(value: Any, rich_text: bool) -> list[str]:
    if isinstance(value, list):
        return [t for v in value for t in _field_text(v, rich_text)]
    if value is None or isinstance(value, (dict, bool)):
        return []
    text = str(value)
    if not text:
        return []
    return [html.unescape(text) if rich_text else text]


def item_text(item: ContentItem, type_text_fields: Sequence[TypeTextField]) -> list[str]:
    """Name, description and declared text fields of a content item."""
    texts = [t for t in (item.name, item.description) if t]
    for text_field in type_text_fields:
        if text_field.type_name != item.type:
            continue
        texts.extend(_field_text(item.fields.get(text_field.field_name), text_field.is_rich_text))
    return texts


def page_keywords(
    data: PageData,
    items: Iterable[ContentItem],
    type_text_fields: Sequence[TypeTextField],
) -> list[str]:
    texts: list[str] = []
    if data.properties.keywords:
        texts.append(data.properties.keywords)
    for instance in data.component_instances:
        texts.extend(component_text(instance))
    for item in items:
        texts.extend(item_text(item, type_text_fields))
    return split_keywords(" ".join(texts))


def generate_page_index(
    site: str,
    pages: Sequence[Page],
    page_data: Mapping[str, PageData],
    page_content: Mapping[str, Sequence[ContentItem]],
    type_text_fields: Sequence[TypeTextField],
) -> list[PageIndexRecord]:
    """
    Build one index record per indexable page.

    Detail pages, pages without data and pages marked `noIndex` are skipped.
    """
    records = []
    seen: set[str] = set()
    for page in pages:
        data = page_data.get(page.id)
        if page.is_detail_page or data is None or data.properties.no_index:
            continue
        if page.id in seen:
            continue
        seen.add(page.id)
        records.append(
            PageIndexRecord(
                site=site,
                pageid=page.id,
                pagename=page.name,
                pageurl=page.page_url,
                pagetitle=data.properties.title_or_placeholder,
                pagedescription=data.properties.description_or_placeholder,
                keywords=page_keywords(data, page_content.get(page.id, ()), type_text_fields),
            )
        )
    return records
