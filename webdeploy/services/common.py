import uuid


def coerce_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Return ``value`` as a UUID, or None when it is missing or malformed."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
