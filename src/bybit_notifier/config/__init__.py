from .settings import NotifierSettings, load_settings

__all__ = ["NotifierSettings", "load_settings"]
