from .setting import (
    DevDexSettings,
    get_settings,
    load_settings,
    reset_settings,
)

__all__ = [
    "DevDexSettings",
    "get_settings",
    "load_settings",
    "reset_settings",
]
