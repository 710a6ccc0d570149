import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from booklog.book import Genre
from booklog.errors import FieldError, ValidationError

TITLE_MAX = 200
AUTHOR_MAX = 100
DESCRIPTION_MAX = 1000
NOTES_MAX = 500
BORROWER_MAX = 100
TAG_MAX = 30
COVER_URL_MAX = 2048
MIN_PUBLICATION_YEAR = 1000

# Internal attribute name -> name used on the wire and in error reports
WIRE_NAMES = {
    "title": "title",
    "author": "author",
    "genre": "genre",
    "publication_year": "publicationYear",
    "is_read": "isRead",
    "cover_image_url": "coverImageUrl",
    "isbn": "isbn",
    "description": "description",
    "notes": "notes",
    "rating": "rating",
    "tags": "tags",
}
EDITABLE_FIELDS = frozenset(WIRE_NAMES)
REQUIRED_FIELDS = ("title", "author", "genre", "publication_year")

_http_url = TypeAdapter(HttpUrl)


class ISBNValidator:
    """ISBN check: after stripping hyphens and spaces, exactly 10 or 13 digits."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[-\s]", "", raw)

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        return len(s) in (10, 13) and s.isascii() and s.isdigit()


class TextValidator:
    """Trimming and length checks for free-text fields."""

    @staticmethod
    def clean(text: Any) -> Optional[str]:
        """Trim a string; blank strings become None."""
        if text is None:
            return None
        t = text.strip()
        return t or None

    @staticmethod
    def within(text: Optional[str], limit: int) -> bool:
        return text is None or len(text) <= limit


def max_publication_year(today: Optional[date] = None) -> int:
    return (today or date.today()).year + 1


def is_valid_url(value: str) -> bool:
    try:
        _http_url.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def validate_borrower_name(name: Any) -> str:
    """Return the trimmed borrower name or raise ValidationError."""
    if name is not None and not isinstance(name, str):
        raise ValidationError.single("borrowerName", "Borrower name must be a string")
    cleaned = TextValidator.clean(name)
    if cleaned is None:
        raise ValidationError.single("borrowerName", "Borrower name is required")
    if not TextValidator.within(cleaned, BORROWER_MAX):
        raise ValidationError.single("borrowerName", f"Borrower name cannot exceed {BORROWER_MAX} characters")
    return cleaned


def reject_protected_fields(patch: Mapping[str, Any]) -> None:
    """Updates may only touch catalog fields; lending and identity have their own paths."""
    errors = [
        FieldError(key, f"{key} cannot be modified through an update")
        for key in patch
        if key not in EDITABLE_FIELDS
    ]
    if errors:
        raise ValidationError(errors)


def _clean_tags(raw: Any, errors: List[FieldError]) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        errors.append(FieldError("tags", "Tags must be a list of strings"))
        return []
    seen: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            errors.append(FieldError("tags", "Tags must be a list of strings"))
            return []
        tag = item.strip()
        if not tag:
            continue
        if len(tag) > TAG_MAX:
            errors.append(FieldError("tags", f"Tag cannot exceed {TAG_MAX} characters"))
            return []
        if tag not in seen:
            seen.append(tag)
    return seen


def _check_text(data: Mapping[str, Any], key: str, limit: int, errors: List[FieldError],
                label: str, required: bool = False) -> Optional[str]:
    raw = data.get(key)
    wire = WIRE_NAMES[key]
    if raw is not None and not isinstance(raw, str):
        errors.append(FieldError(wire, f"{label} must be a string"))
        return None
    value = TextValidator.clean(raw)
    if value is None:
        if required:
            errors.append(FieldError(wire, f"{label} is required"))
        return None
    if not TextValidator.within(value, limit):
        errors.append(FieldError(wire, f"{label} cannot exceed {limit} characters"))
    return value


def validate_book_fields(data: Mapping[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """Normalize and validate a complete book record.

    ``data`` is keyed by attribute name (``publication_year``, ``is_read``...).
    Returns the cleaned record. Every violation is collected before raising,
    so callers see all offending fields at once.
    """
    errors: List[FieldError] = []
    cleaned: Dict[str, Any] = {}

    cleaned["title"] = _check_text(data, "title", TITLE_MAX, errors, "Title", required=True)
    cleaned["author"] = _check_text(data, "author", AUTHOR_MAX, errors, "Author", required=True)
    cleaned["description"] = _check_text(data, "description", DESCRIPTION_MAX, errors, "Description")
    cleaned["notes"] = _check_text(data, "notes", NOTES_MAX, errors, "Notes")

    genre = data.get("genre")
    if genre is None or genre == "":
        errors.append(FieldError("genre", "Genre is required"))
    else:
        try:
            cleaned["genre"] = Genre.parse(genre)
        except ValueError:
            errors.append(FieldError("genre", "Invalid genre"))

    year = data.get("publication_year")
    upper = max_publication_year(today)
    if year is None:
        errors.append(FieldError("publicationYear", "Publication year is required"))
    elif isinstance(year, bool) or not isinstance(year, int):
        errors.append(FieldError("publicationYear", "Publication year must be an integer"))
    elif not MIN_PUBLICATION_YEAR <= year <= upper:
        errors.append(FieldError(
            "publicationYear",
            f"Publication year must be between {MIN_PUBLICATION_YEAR} and {upper}",
        ))
    else:
        cleaned["publication_year"] = year

    is_read = data.get("is_read", False)
    if is_read is None:
        is_read = False
    if not isinstance(is_read, bool):
        errors.append(FieldError("isRead", "isRead must be a boolean"))
    cleaned["is_read"] = is_read

    url = _check_text(data, "cover_image_url", COVER_URL_MAX, errors, "Cover image URL")
    if url is not None and not is_valid_url(url):
        errors.append(FieldError("coverImageUrl", "Cover image must be a valid URL"))
    cleaned["cover_image_url"] = url

    isbn = data.get("isbn")
    if isbn is not None and not isinstance(isbn, str):
        errors.append(FieldError("isbn", "ISBN must be a string"))
        isbn = None
    isbn = TextValidator.clean(isbn)
    if isbn is not None:
        if ISBNValidator.is_valid_isbn(isbn):
            isbn = ISBNValidator.normalize_isbn(isbn)
        else:
            errors.append(FieldError("isbn", "ISBN must be 10 or 13 digits (hyphens optional)"))
    cleaned["isbn"] = isbn

    rating = data.get("rating")
    if rating is not None:
        if isinstance(rating, bool) or not isinstance(rating, int):
            errors.append(FieldError("rating", "Rating must be an integer"))
        elif not 1 <= rating <= 5:
            errors.append(FieldError("rating", "Rating must be between 1 and 5"))
    cleaned["rating"] = rating

    cleaned["tags"] = _clean_tags(data.get("tags"), errors)

    if errors:
        raise ValidationError(errors)
    return cleaned
