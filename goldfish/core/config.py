import yaml
from pathlib import Path
import os
from typing import Any, Dict, Optional, List, Callable
import logging
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileModifiedEvent
import time
import re

from goldfish.core.errors import ConfigError

DEFAULT_USTEP_URL = "https://ustep.ustp.edu.ph"


def default_config(config_dir: Path) -> Dict[str, Any]:
    """Config written on first run. Secrets come from the environment."""
    return {
        "server": {
            "host": "127.0.0.1",
            "port": 3001,
            "cors_origins": [
                "http://localhost:5173",
                "http://127.0.0.1:5173",
            ],
            "cors_origin_regex": r"https://.*\.vercel\.app",
        },
        "canvas": {
            "base_url": "${CANVAS_BASE_URL}",
            "api_token": "${CANVAS_API_TOKEN}",
            "mode": "all",  # all | upcoming
        },
        "ustep": {
            "base_url": DEFAULT_USTEP_URL,
            "service": "moodle_mobile_app",
        },
        "classroom": {
            "course_page_size": 20,
            "coursework_page_size": 100,
        },
        "http": {
            "timeout": None,  # seconds; None uses the transport default
        },
        "sync": {
            "credential_timeout": 300,  # seconds an interactive sync waits for a login
        },
        "database": {
            "path": str(config_dir / "goldfish.db"),
        },
        "logging": {
            "level": "INFO",
            "file": str(config_dir / "goldfish.log"),
        },
    }


class ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, config):
        self.config = config
        self.last_modified = 0
        self.cooldown = 1.0  # Cooldown period in seconds

    def on_modified(self, event):
        if not isinstance(event, FileModifiedEvent):
            return

        current_time = time.time()
        if current_time - self.last_modified < self.cooldown:
            return

        if event.src_path == str(self.config.config_file):
            try:
                self.last_modified = current_time
                self.config.reload()
            except Exception as e:
                logging.error(f"Error handling config change: {e}")


class Config:
    def __init__(self, config_path: Optional[str] = None, watch: bool = False):
        logging.debug("Initializing Config class")

        self.change_callbacks: List[Callable] = []
        self._loading = False  # Lock to prevent recursive reloading
        self.observer = None

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path.home() / ".goldfish"
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config file: {self.config_file}")

        self._load_env_file()
        self._ensure_config_exists()
        self._load_config()

        if watch:
            self.observer = Observer()
            logging.info(f"Path monitored for reloading: {self.config_dir}")
            self.observer.schedule(ConfigChangeHandler(self), str(self.config_dir), recursive=False)
            self.observer.start()

    def register_change_callback(self, callback: Callable) -> None:
        """Register a callback to be called when config changes"""
        self.change_callbacks.append(callback)

    def reload(self) -> None:
        """Reload config and notify listeners"""
        if self._loading:
            return

        self._loading = True
        try:
            logging.info("Config file change detected - reloading configuration")
            old_config = self.data.copy() if hasattr(self, 'data') else {}
            self._load_config()
            self._log_config_changes(old_config, self.data)

            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    logging.error(f"Error in config change callback: {e}")
        finally:
            self._loading = False

    def _log_config_changes(self, old_config: Dict, new_config: Dict) -> None:
        """Log the differences between old and new configs. Secrets are masked."""
        def show(key: str, value: Any) -> Any:
            return "***" if "token" in key.lower() and value else value

        def compare_dict(path: str, dict1: Dict, dict2: Dict) -> None:
            for key in set(dict1.keys()) | set(dict2.keys()):
                current_path = f"{path}.{key}" if path else key
                if key in dict1 and key in dict2:
                    if isinstance(dict1[key], dict) and isinstance(dict2[key], dict):
                        compare_dict(current_path, dict1[key], dict2[key])
                    elif dict1[key] != dict2[key]:
                        logging.info(
                            f"Config changed: {current_path}: {show(key, dict1[key])} -> {show(key, dict2[key])}"
                        )
                elif key in dict1:
                    logging.info(f"Config removed: {current_path}")
                else:
                    logging.info(f"Config added: {current_path}: {show(key, dict2[key])}")

        compare_dict("", old_config, new_config)

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.dump(default_config(self.config_dir), sort_keys=False))

    def _load_env_file(self) -> None:
        """Load environment variables from .env file"""
        env_files = [
            self.config_dir / ".env",
            self.config_dir.parent / ".env",
            Path.cwd() / ".env"
        ]

        env_file = next((path for path in env_files if path.exists()), None)
        if not env_file:
            logging.debug("No .env file found, skipping environment variable loading")
            return

        logging.info(f"Loading environment variables from: {env_file}")
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#'):
                        continue

                    match = re.match(r'^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$', line)
                    if match:
                        key, value = match.groups()
                        value = value.strip('"').strip("'")
                        # Real environment wins over .env
                        if key not in os.environ:
                            os.environ[key] = value
                            logging.debug(f"Loaded env var: {key}")
        except OSError as e:
            logging.warning(f"Error loading .env file: {e}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ${VAR} / $VAR references. Unset variables become None."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith('${') and data.endswith('}'):
                return os.environ.get(data[2:-1]) or None
            elif data.startswith('$') and len(data) > 1 and re.match(r'^\$[A-Za-z_][A-Za-z0-9_]*$', data):
                return os.environ.get(data[1:]) or None
            return data
        else:
            return data

    def _load_config(self) -> None:
        """Load configuration from file"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f)

            if not isinstance(new_data, dict):
                raise ConfigError("Invalid config format: root must be a dictionary")

            new_data = self._substitute_env_vars(new_data)
            defaults = default_config(self.config_dir)
            for section, values in defaults.items():
                if isinstance(values, dict):
                    merged = dict(values)
                    merged.update(new_data.get(section) or {})
                    new_data[section] = merged

            if new_data["logging"].get("file"):
                new_data["logging"]["file"] = os.path.expanduser(new_data["logging"]["file"])

            self.data = new_data

        except (OSError, yaml.YAMLError, ConfigError) as e:
            logging.error(f"Error loading config: {e}")
            if hasattr(self, 'data'):
                logging.info("Keeping previous configuration")
            else:
                logging.info("Using default configuration")
                self.data = self._substitute_env_vars(default_config(self.config_dir))

    def section(self, name: str) -> Dict[str, Any]:
        """Get one config section (always a dict)"""
        return self.data.get(name) or {}
