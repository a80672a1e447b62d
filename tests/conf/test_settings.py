import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from apelaunch.conf.get_settings import CONFIG_FILE_ENV, get_global_settings, load_settings
from apelaunch.conf.settings import LedgerSettings


class SettingsTestCase(unittest.TestCase):
    def tearDown(self):
        get_global_settings.cache_clear()
        super().tearDown()

    def test_load_settings(self):
        settings = load_settings("apelaunch.conf.unittests")
        self.assertEqual(settings.NETWORK_NAME, "unittests")
        self.assertEqual(settings.FEE_POINTS_DENOMINATOR, 10_000)
        self.assertEqual(settings.VESTING_STEPS_PER_WORD, 12)
        self.assertEqual(settings.MAX_VESTING_STEPS, 36)

    def test_load_settings_without_settings(self):
        with self.assertRaises(TypeError):
            load_settings("apelaunch.conf.get_settings")

    def test_global_settings_from_environment(self):
        get_global_settings.cache_clear()
        with patch.dict(os.environ, {CONFIG_FILE_ENV: "apelaunch.conf.unittests"}):
            self.assertEqual(get_global_settings().NETWORK_NAME, "unittests")

        get_global_settings.cache_clear()
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_global_settings().NETWORK_NAME, "localnet")

    def test_settings_are_frozen(self):
        settings = load_settings("apelaunch.conf.localnet")
        with self.assertRaises(ValidationError):
            settings.NETWORK_NAME = "other"

    def test_invalid_layouts(self):
        with self.assertRaises(ValidationError):
            LedgerSettings(NETWORK_NAME="x", ALLOCATION_AMOUNT_BITS=120)
        with self.assertRaises(ValidationError):
            LedgerSettings(NETWORK_NAME="x", VESTING_WAIT_TIME_BITS=15)
        with self.assertRaises(ValidationError):
            LedgerSettings(NETWORK_NAME="x", MAX_VESTING_WAIT_TIME=20_000)
        with self.assertRaises(ValidationError):
            LedgerSettings(NETWORK_NAME="x", DEFAULT_BUNDLE_FEE_POINTS=2_000)
        with self.assertRaises(ValidationError):
            LedgerSettings(NETWORK_NAME="x", UNKNOWN_FIELD=1)
