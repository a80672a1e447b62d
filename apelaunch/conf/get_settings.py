import importlib
import logging
import os
from functools import lru_cache

from apelaunch.conf.settings import LedgerSettings

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "APELAUNCH_CONFIG_FILE"
DEFAULT_CONFIG_MODULE = "apelaunch.conf.localnet"


def load_settings(module_path: str) -> LedgerSettings:
    """Import `module_path` and return its `SETTINGS`."""
    module = importlib.import_module(module_path)
    settings = getattr(module, "SETTINGS", None)
    if not isinstance(settings, LedgerSettings):
        raise TypeError(f"{module_path}.SETTINGS must be a LedgerSettings instance")
    return settings


@lru_cache(maxsize=None)
def get_global_settings() -> LedgerSettings:
    module_path = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_MODULE)
    logger.debug("loading settings from %s", module_path)
    return load_settings(module_path)
