from pathlib import Path

# Session storage
DEFAULT_SESSIONS_ROOT = Path(".convflow/sessions")
DEFAULT_STORAGE_KEY = "workflow"
SESSION_SUFFIX = ".json"
SESSION_TEMP_SUFFIX = ".json.tmp"

# Config
CONFIG_DIRNAME = ".convflow"
CONFIG_FILENAME = "config.yml"
