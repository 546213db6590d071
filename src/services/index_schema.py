"""Page index content type validation."""

from typing import Iterable

from src.constants import (
    PAGE_INDEX_DESCRIPTION_FIELD,
    PAGE_INDEX_KEYWORDS_FIELD,
    PAGE_INDEX_TEXT_FIELDS,
)
from src.models.content_models import TEXT_DATATYPES, ContentType, Repository, TypeTextField
from src.services.errors import SchemaValidationError


def validate_page_index_type(content_type: ContentType, repository: Repository) -> None:
    """
    Check that `content_type` can hold page index records.

    Raises:
        SchemaValidationError: Naming the first missing or mistyped field
    """
    if content_type.name not in repository.content_types:
        raise SchemaValidationError(
            f"type {content_type.name} is not in repository {repository.name or repository.id}"
        )

    for name in PAGE_INDEX_TEXT_FIELDS:
        field = content_type.field(name)
        if field is None or field.datatype != "text":
            raise SchemaValidationError(
                f"type {content_type.name} does not have field {name} of type text"
            )

    description = content_type.field(PAGE_INDEX_DESCRIPTION_FIELD)
    if description is None or description.datatype not in TEXT_DATATYPES:
        raise SchemaValidationError(
            f"type {content_type.name} does not have field {PAGE_INDEX_DESCRIPTION_FIELD} of type text"
        )

    keywords = content_type.field(PAGE_INDEX_KEYWORDS_FIELD)
    if keywords is None or keywords.datatype != "text" or keywords.valuecount != "list":
        raise SchemaValidationError(
            f"type {content_type.name} does not have field {PAGE_INDEX_KEYWORDS_FIELD} "
            "of type text with multiple values"
        )


def get_type_text_fields(content_types: Iterable[ContentType]) -> list[TypeTextField]:
    """Every (type, field) pair whose values are indexed as keywords."""
    return [
        TypeTextField(type_name=content_type.name, field_name=field.name, datatype=field.datatype)
        for content_type in content_types
        for field in content_type.fields
        if field.datatype in TEXT_DATATYPES
    ]
