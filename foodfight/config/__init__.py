from .settings import Settings, settings, get_bool_env, get_int_env

__all__ = ["Settings", "settings", "get_bool_env", "get_int_env"]
