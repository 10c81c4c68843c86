from __future__ import annotations

import unittest

from config.errors import SettingsError
from config.settings import load_database_settings
from config.settings import load_runtime_settings
from config.settings import parse_duration


class ParseDurationTests(unittest.TestCase):
    def test_simple_units(self):
        self.assertEqual(parse_duration("30s"), 30.0)
        self.assertEqual(parse_duration("5m"), 300.0)
        self.assertEqual(parse_duration("2h"), 7200.0)
        self.assertAlmostEqual(parse_duration("500ms"), 0.5)

    def test_compound_duration(self):
        self.assertEqual(parse_duration("1h30m"), 5400.0)
        self.assertAlmostEqual(parse_duration("1m0.5s"), 60.5)

    def test_bare_zero_is_allowed(self):
        self.assertEqual(parse_duration("0"), 0.0)

    def test_missing_unit_is_rejected(self):
        with self.assertRaises(ValueError):
            parse_duration("30")
        with self.assertRaises(ValueError):
            parse_duration("")
        with self.assertRaises(ValueError):
            parse_duration("abc")


class DatabaseSettingsTests(unittest.TestCase):
    def test_defaults_to_sqlite(self):
        settings = load_database_settings({})
        self.assertEqual(settings.database_type, "sqlite")
        self.assertEqual(settings.database_path, "./data/bot_state.db")
        self.assertEqual(settings.pool_max_open, 10)
        self.assertEqual(settings.pool_max_idle, 5)
        self.assertEqual(settings.pool_max_lifetime_seconds, 3600.0)

    def test_database_type_is_case_insensitive(self):
        settings = load_database_settings({"DATABASE_TYPE": "SQLite", "DATABASE_PATH": "/tmp/x.db"})
        self.assertEqual(settings.database_type, "sqlite")
        self.assertEqual(settings.database_path, "/tmp/x.db")

    def test_unknown_database_type_is_rejected(self):
        with self.assertRaises(SettingsError):
            load_database_settings({"DATABASE_TYPE": "postgres"})

    def test_mysql_requires_credentials(self):
        with self.assertRaises(SettingsError):
            load_database_settings({"DATABASE_TYPE": "mysql", "MYSQL_PASSWORD": "pw"})
        with self.assertRaises(SettingsError):
            load_database_settings({"DATABASE_TYPE": "mysql", "MYSQL_USERNAME": "bot"})

    def test_mysql_settings(self):
        settings = load_database_settings(
            {
                "DATABASE_TYPE": "mysql",
                "MYSQL_HOST": "db.internal",
                "MYSQL_PORT": "3307",
                "MYSQL_DATABASE": "state",
                "MYSQL_USERNAME": "bot",
                "MYSQL_PASSWORD": "secret",
                "MYSQL_TIMEOUT": "1m",
            }
        )
        self.assertEqual(settings.database_type, "mysql")
        self.assertEqual(settings.host, "db.internal")
        self.assertEqual(settings.port, 3307)
        self.assertEqual(settings.database, "state")
        self.assertEqual(settings.timeout_seconds, 60.0)
        self.assertNotIn("secret", settings.describe())

    def test_mysql_defaults(self):
        settings = load_database_settings(
            {"DATABASE_TYPE": "mysql", "MYSQL_USERNAME": "bot", "MYSQL_PASSWORD": "secret"}
        )
        self.assertEqual(settings.host, "localhost")
        self.assertEqual(settings.port, 3306)
        self.assertEqual(settings.database, "bmad_bot")
        self.assertEqual(settings.timeout_seconds, 30.0)

    def test_invalid_mysql_timeout_is_rejected(self):
        env = {"DATABASE_TYPE": "mysql", "MYSQL_USERNAME": "bot", "MYSQL_PASSWORD": "pw"}
        with self.assertRaises(SettingsError):
            load_database_settings({**env, "MYSQL_TIMEOUT": "thirty"})
        with self.assertRaises(SettingsError):
            load_database_settings({**env, "MYSQL_TIMEOUT": "0"})

    def test_pool_idle_is_capped_by_open(self):
        settings = load_database_settings({"DB_POOL_MAX_OPEN": "2", "DB_POOL_MAX_IDLE": "8"})
        self.assertEqual(settings.pool_max_open, 2)
        self.assertEqual(settings.pool_max_idle, 2)

    def test_invalid_pool_size_is_rejected(self):
        with self.assertRaises(SettingsError):
            load_database_settings({"DB_POOL_MAX_OPEN": "0"})
        with self.assertRaises(SettingsError):
            load_database_settings({"DB_POOL_MAX_OPEN": "many"})


class RuntimeSettingsTests(unittest.TestCase):
    def test_defaults(self):
        runtime = load_runtime_settings({})
        self.assertEqual(runtime.recovery_window_minutes, 5)
        self.assertEqual(runtime.thread_ownership_max_age_hours, 24)
        self.assertEqual(runtime.maintenance_interval_seconds, 3600)
        self.assertEqual(runtime.config_reload_interval_seconds, 300)

    def test_recovery_window_must_be_a_non_negative_integer(self):
        self.assertEqual(load_runtime_settings({"MESSAGE_RECOVERY_WINDOW_MINUTES": "15"}).recovery_window_minutes, 15)
        with self.assertRaises(SettingsError):
            load_runtime_settings({"MESSAGE_RECOVERY_WINDOW_MINUTES": "-1"})
        with self.assertRaises(SettingsError):
            load_runtime_settings({"MESSAGE_RECOVERY_WINDOW_MINUTES": "five"})


if __name__ == "__main__":
    unittest.main()
