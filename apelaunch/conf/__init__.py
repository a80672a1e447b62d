from apelaunch.conf.get_settings import get_global_settings
from apelaunch.conf.settings import LedgerSettings

__all__ = ["LedgerSettings", "get_global_settings"]
