from .errors import InvalidDisplayName

DEFAULT_MAX_LENGTH = 20


def validate_display_name(name, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Return the trimmed display name or raise InvalidDisplayName."""
    if not isinstance(name, str) or not name.strip():
        raise InvalidDisplayName('Please enter a display name')
    name = name.strip()
    if len(name) > max_length:
        raise InvalidDisplayName(f'Display name must be at most {max_length} characters')
    return name
