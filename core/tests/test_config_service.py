"""
core/tests/test_config_service.py

Layer precedence and typed sections of ConfigService.
Uses unittest to avoid external test dependencies.
"""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from core.config.config_service import ConfigService


class TestConfigService(unittest.TestCase):
    def test_embedded_defaults(self) -> None:
        cfg = ConfigService(environ={})
        self.assertTrue(cfg.signing.dispatch_inline)
        self.assertEqual(cfg.signing.render_timeout_seconds, 60.0)
        self.assertEqual(cfg.rendering.max_font_size, 12.0)
        self.assertEqual(cfg.certificate.version, "1.0")
        self.assertFalse(cfg.encryption.encrypt_on_completion)
        self.assertEqual(cfg.encryption.password_length, 24)
        self.assertIsInstance(cfg.database.path, Path)
        self.assertEqual(cfg.meta_source("Signing", "dispatch_inline")["layer"], "code")

    def test_environment_overlay_is_typed(self) -> None:
        cfg = ConfigService(environ={
            "SIGNFLOW_SIGNING__DISPATCH_INLINE": "no",
            "SIGNFLOW_ENCRYPTION__PASSWORD_LENGTH": "32",
            "SIGNFLOW_RENDERING__FONT_HEIGHT_RATIO": "0.5",
            # no section separator: not a config key
            "SIGNFLOW_ENCRYPTION_KEY": "secret",
        })
        self.assertFalse(cfg.signing.dispatch_inline)
        self.assertEqual(cfg.encryption.password_length, 32)
        self.assertEqual(cfg.rendering.font_height_ratio, 0.5)
        self.assertEqual(cfg.meta_source("Encryption", "password_length")["layer"], "env")
        self.assertIsNone(cfg.get("Encryption", "key"))

    def test_machine_ini_wins_over_environment(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            ini = Path(tmp) / "machine.ini"
            ini.write_text("[Signing]\norganization_name = Machine Org\n", encoding="utf-8")
            cfg = ConfigService(environ={
                "SIGNFLOW_SIGNING__ORGANIZATION_NAME": "Env Org",
                "SIGNFLOW_CONFIG": str(ini),
            })
            self.assertEqual(cfg.signing.organization_name, "Machine Org")
            self.assertEqual(cfg.meta_source("Signing", "organization_name")["layer"], "machine")

    def test_get_with_cast(self) -> None:
        cfg = ConfigService(environ={"SIGNFLOW_SIGNING__RENDER_TIMEOUT_SECONDS": "7.5"})
        self.assertEqual(cfg.get("Signing", "render_timeout_seconds", cast=float), 7.5)
        self.assertEqual(cfg.get("Signing", "render_timeout_seconds"), "7.5")
        self.assertIsNone(cfg.get("Nope", "missing"))

    def test_reload_picks_up_new_ini_content(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            ini = Path(tmp) / "machine.ini"
            ini.write_text("[Certificate]\nversion = 1.0\n", encoding="utf-8")
            cfg = ConfigService(environ={}, machine_ini=ini)
            ini.write_text("[Certificate]\nversion = 2.0\n", encoding="utf-8")
            cfg.reload()
            self.assertEqual(cfg.certificate.version, "2.0")


if __name__ == "__main__":
    unittest.main()
