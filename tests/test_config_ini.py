import configparser
import os
import tempfile
import textwrap
import unittest
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

from ephfleet_core import AppConfig, save_config_to_ini


class AppConfigIniTests(unittest.TestCase):
    def test_from_sources_reads_ini_values(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir, "config.ini")
            config_path.write_text(
                textwrap.dedent(
                    """
                    [ephfleet]
                    username = alice
                    aws_regions = us-east-1, us-west-2
                    gce_projects = fleet-a,fleet-b
                    max_concurrency = 8
                    lifetime = 6h

                    [ephfleet.secrets]
                    slack_token = xoxb-secret
                    """
                ).strip()
                + "\n",
                encoding="utf-8",
            )

            with patch.dict(os.environ, {}, clear=True):
                config = AppConfig.from_sources(ini_path=config_path)

            self.assertEqual("alice", config.username)
            self.assertEqual(["us-east-1", "us-west-2"], config.list_value("aws_regions"))
            self.assertEqual(["fleet-a", "fleet-b"], config.list_value("gce_projects"))
            self.assertEqual(8, config.concurrency)
            self.assertEqual(timedelta(hours=6), config.default_lifetime)
            self.assertEqual("xoxb-secret", config.slack_token)
            self.assertIsNone(config.azure_subscription)

    def test_defaults_without_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {}, clear=True):
                config = AppConfig.from_sources(ini_path=Path(tmpdir, "missing.ini"))

        self.assertEqual(32, config.concurrency)
        self.assertEqual(timedelta(hours=12), config.default_lifetime)
        self.assertEqual([], config.list_value("gce_zones"))

    def test_env_variables_override_ini_values(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir, "config.ini")
            config_path.write_text(
                textwrap.dedent(
                    """
                    [ephfleet]
                    username = ini-user

                    [ephfleet.secrets]
                    slack_token = ini-token
                    """
                ).strip()
                + "\n",
                encoding="utf-8",
            )

            with patch.dict(
                os.environ,
                {
                    "EPHFLEET_SLACK_TOKEN": "env-token",
                    "EPHFLEET_USERNAME": "bob",
                    "EPHFLEET_AWS_PROFILE": "   ",
                },
                clear=True,
            ):
                config = AppConfig.from_sources(ini_path=config_path)

            self.assertEqual("env-token", config.slack_token)
            self.assertEqual("bob", config.username)
            self.assertIsNone(config.aws_profile)

    def test_invalid_values_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir, "config.ini")
            config_path.write_text("[ephfleet]\nlifetime = forever\n", encoding="utf-8")

            with patch.dict(os.environ, {}, clear=True):
                with self.assertRaises(ValueError):
                    AppConfig.from_sources(ini_path=config_path)

            with patch.dict(os.environ, {"EPHFLEET_MAX_CONCURRENCY": "-1"}, clear=True):
                with self.assertRaises(ValueError):
                    AppConfig.from_sources(ini_path=Path(tmpdir, "missing.ini"))

    def test_save_config_to_ini_writes_sections(self) -> None:
        config = AppConfig(
            username="alice",
            gce_projects="fleet-a",
            ssh_key_path="~/.ssh/id_ed25519",
            max_concurrency=4,
            slack_token="xoxb-secret",
        )

        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir, "nested", "config.ini")
            save_config_to_ini(config, config_path)

            parser = configparser.ConfigParser(interpolation=None)
            parser.read(config_path, encoding="utf-8")

            self.assertEqual("alice", parser.get("ephfleet", "username"))
            self.assertEqual("fleet-a", parser.get("ephfleet", "gce_projects"))
            self.assertEqual("4", parser.get("ephfleet", "max_concurrency"))
            self.assertEqual("xoxb-secret", parser.get("ephfleet.secrets", "slack_token"))
            self.assertFalse(parser.has_option("ephfleet", "slack_token"))
            self.assertFalse(parser.has_option("ephfleet", "aws_profile"))

            if os.name == "posix":
                mode = os.stat(config_path).st_mode & 0o777
                self.assertEqual(0o600, mode)


if __name__ == "__main__":  # pragma: no cover - test hook
    unittest.main()
