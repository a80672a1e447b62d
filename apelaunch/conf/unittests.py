from apelaunch.conf.settings import LedgerSettings

SETTINGS = LedgerSettings(
    NETWORK_NAME="unittests",
    DEFAULT_BUNDLE_FEE_POINTS=100,
    MAX_BUNDLE_FEE_POINTS=1_000,
)
