"""Shared constants for durastep."""

SNAPSHOT_SCHEMA_VERSION = 1
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_BUSY_POLICY = "queue"
DEFAULT_CONFIG_PATH = "durastep.yaml"
REDIS_KEY_PREFIX = "durastep"
