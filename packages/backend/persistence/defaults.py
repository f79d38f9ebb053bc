"""Preset memory folder templates for quick setup."""

from persistence.models import MemoryFolder

DEFAULT_FOLDER_TEMPLATES: dict[str, dict[str, str]] = {
    "personal": {
        "name": "Personal",
        "icon": "person.fill",
        "color": "purple",
    },
    "work": {
        "name": "Work",
        "icon": "briefcase.fill",
        "color": "blue",
    },
    "code": {
        "name": "Code & Tech",
        "icon": "chevron.left.forwardslash.chevron.right",
        "color": "green",
    },
    "preferences": {
        "name": "Preferences",
        "icon": "slider.horizontal.3",
        "color": "orange",
    },
}


def folder_from_template(template: str) -> MemoryFolder:
    """Build a fresh, empty folder from a template key.

    Raises:
        KeyError: Unknown template key.
    """
    return MemoryFolder(**DEFAULT_FOLDER_TEMPLATES[template])
