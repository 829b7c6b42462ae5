"""Validation of the "add bhandara" form and construction of new events."""

from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import uuid4

import structlog

from bhandara.exceptions import ImageEncodingError, SubmissionError
from bhandara.images import DEFAULT_MAX_IMAGE_BYTES, decode_data_uri, is_image_data_uri
from bhandara.models.event import Event
from bhandara.models.validation import ValidationResult


logger = structlog.get_logger(__name__)

REQUIRED_TEXT_FIELDS = {
    "title": "Title is required",
    "location": "Location is required",
}


def parse_event_time(value: Any) -> datetime:
    """Parse a form date/time value into an aware datetime.

    Accepts datetimes and ISO-8601 strings, including ``datetime-local``
    input values such as ``2024-06-01T18:30``. Naive values are local time.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported date/time value: {value!r}")
    return parsed if parsed.tzinfo else parsed.astimezone()


def _check_image(image: Any, max_image_bytes: int, result: ValidationResult) -> None:
    if not image:
        result.add_error("Please add an image", field="image")
        return
    if not isinstance(image, str) or not is_image_data_uri(image):
        result.add_error("Image must be an embedded image data URI", field="image")
        return

    try:
        _, data = decode_data_uri(image)
    except ImageEncodingError as e:
        result.add_error(f"Image could not be read: {e}", field="image")
        return
    if len(data) > max_image_bytes:
        result.add_error(f"Image is larger than {max_image_bytes} bytes", field="image")


def validate_submission(
    form: Mapping[str, Any],
    now: Optional[datetime] = None,
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> ValidationResult:
    """
    Check a submitted form.

    Args:
        form: Field values keyed by ``title``, ``description``, ``location``,
            ``date_time`` and ``image`` (a data URI)
        now: Reference time for the past-event warning
        max_image_bytes: Largest accepted decoded image

    Returns:
        ValidationResult with every problem found
    """
    result = ValidationResult()

    for field, message in REQUIRED_TEXT_FIELDS.items():
        value = form.get(field)
        if not isinstance(value, str) or not value.strip():
            result.add_error(message, field=field)

    raw_time = form.get("date_time")
    if raw_time in (None, ""):
        result.add_error("Date and time are required", field="date_time")
    else:
        try:
            event_time = parse_event_time(raw_time)
        except ValueError as e:
            result.add_error(f"Invalid date and time: {e}", field="date_time")
        else:
            reference = now or datetime.now().astimezone()
            if event_time < reference:
                result.add_warning("Event time is in the past")

    _check_image(form.get("image"), max_image_bytes, result)
    return result


def build_event(
    form: Mapping[str, Any],
    owner_id: str,
    now: Optional[datetime] = None,
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> Event:
    """Validate ``form`` and create a new event owned by ``owner_id``.

    Raises:
        SubmissionError: if validation fails; no event is created
    """
    if not owner_id:
        raise ValueError("owner_id is required")

    result = validate_submission(form, now=now, max_image_bytes=max_image_bytes)
    if not result:
        logger.info("Submission rejected", errors=result.errors)
        raise SubmissionError(result)

    for warning in result.warnings:
        logger.warning("Submission accepted with warning", warning=warning)

    return Event(
        id=str(uuid4()),
        title=form["title"].strip(),
        description=(form.get("description") or "").strip(),
        location=form["location"].strip(),
        image_data=form["image"],
        event_time=parse_event_time(form["date_time"]),
        owner_id=owner_id,
    )
