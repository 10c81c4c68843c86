from __future__ import annotations

DEFAULT_DATABASE_TYPE = "sqlite"
SUPPORTED_DATABASE_TYPES = ("sqlite", "mysql")
DEFAULT_DATABASE_PATH = "./data/bot_state.db"

DEFAULT_MYSQL_HOST = "localhost"
DEFAULT_MYSQL_PORT = 3306
DEFAULT_MYSQL_DATABASE = "bmad_bot"
DEFAULT_MYSQL_TIMEOUT = "30s"

DEFAULT_POOL_MAX_OPEN = 10
DEFAULT_POOL_MAX_IDLE = 5
DEFAULT_POOL_MAX_LIFETIME_SECONDS = 3600

# Connect phase: 1s, 2s, 4s, 8s between five attempts.
CONNECT_MAX_ATTEMPTS = 5
CONNECT_BASE_DELAY_SECONDS = 1.0
# Execute phase: 0.5s, 1s between three attempts.
EXECUTE_MAX_ATTEMPTS = 3
EXECUTE_BASE_DELAY_SECONDS = 0.5

DEFAULT_RECOVERY_WINDOW_MINUTES = 5
DEFAULT_RECOVERY_FETCH_LIMIT = 50
DEFAULT_RECOVERY_PAUSE_SECONDS = 0.5
DEFAULT_RECOVERY_TIMEOUT_SECONDS = 30.0

DEFAULT_THREAD_OWNERSHIP_MAX_AGE_HOURS = 24
DEFAULT_MAINTENANCE_INTERVAL_SECONDS = 3600
DEFAULT_CONFIG_RELOAD_INTERVAL_SECONDS = 300

CONFIG_VALUE_TYPES = ("string", "int", "bool", "duration")
CONFIG_KEY_MAX_CHARS = 255
CONFIG_VALUE_MAX_CHARS = 65535
TRUE_WORDS = frozenset({"true", "1", "yes", "on", "enabled"})
FALSE_WORDS = frozenset({"false", "0", "no", "off", "disabled"})
