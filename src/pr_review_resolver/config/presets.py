"""Configuration presets for different use cases."""

from typing import Any, ClassVar


class PresetConfig:
    """Predefined configuration presets.

    Each preset lists only the fields it changes relative to the defaults.
    """

    CONSERVATIVE: ClassVar[dict[str, Any]] = {
        "parallel_fetch": False,
        "max_workers": 1,
        "retain_draft_on_failure": True,
    }

    BALANCED: ClassVar[dict[str, Any]] = {}

    FAST: ClassVar[dict[str, Any]] = {
        "parallel_fetch": True,
        "max_workers": 8,
        "retain_draft_on_failure": False,
    }

    @classmethod
    def get(cls, name: str) -> dict[str, Any]:
        """Return a copy of the named preset.

        Raises:
            KeyError: If no preset has that name.
        """
        presets = {
            "conservative": cls.CONSERVATIVE,
            "balanced": cls.BALANCED,
            "fast": cls.FAST,
        }
        return dict(presets[name.lower()])
