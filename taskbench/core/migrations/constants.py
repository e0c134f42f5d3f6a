"""Constants for migration routines."""

INIT_FILE_NAME = "__init__.py"
MIGRATION_FILE_PATTERN = r"^\d{3}_"
MIGRATIONS_TABLE = "schema_migrations"

TABLE_TASKS = "tasks"
COLUMN_EXECUTION_MODE = "execution_mode"
COLUMN_QUEUE_POSITION = "queue_position"
