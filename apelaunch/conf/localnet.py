from apelaunch.conf.settings import LedgerSettings

SETTINGS = LedgerSettings(
    NETWORK_NAME="localnet",
    DEFAULT_BUNDLE_FEE_POINTS=100,
)
