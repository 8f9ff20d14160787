import logging
import os
import re
import time
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "config_schema.yaml"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class ConfigManager:
    """Manages application configuration settings.

    Defaults come from the YAML schema; the user config file is validated
    against it and merged on top. One instance is built at startup and passed
    to whoever needs it.
    """

    def __init__(self, schema_path=None, config_path=None):
        """Load the schema, its defaults, and the user config file (if any)."""
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self.schema = self.load_config_schema(schema_path)
        self.config = self.load_default_config()
        self.load_user_config()

    def get_config_section(self, *keys):
        """Get a specific section of the configuration."""
        section = self.config
        if not section:
            return {}
        for key in keys:
            if isinstance(section, dict) and key in section:
                section = section[key]
            else:
                return {}
        return section

    def get_config_value(self, *keys):
        """Get a specific configuration value using nested keys."""
        value = self.config
        if not value:
            return None
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def set_config_value(self, value, *keys):
        """Set a specific configuration value using nested keys."""
        if not self.config:
            self.config = {}
        config = self.config

        for key in keys[:-1]:
            if key not in config or not isinstance(config[key], dict):
                config[key] = {}
            config = config[key]
        config[keys[-1]] = value

    @staticmethod
    def load_config_schema(schema_path=None):
        """Load the configuration schema from a YAML file."""
        if schema_path is None:
            schema_path = SCHEMA_PATH

        with open(schema_path, 'r', encoding='utf-8') as file:
            schema = yaml.safe_load(file)
        return schema or {}

    def load_default_config(self):
        """Load default configuration values from the schema."""
        def extract_value(item):
            if isinstance(item, dict):
                if 'value' in item:
                    return item['value']
                else:
                    return {k: extract_value(v) for k, v in item.items()}
            return item

        config = {}
        for category, settings in self.schema.items():
            config[category] = extract_value(settings)
        return config

    def _validate_config_value(self, value, schema_item, path):
        """Validate a config value against its schema definition."""
        if not isinstance(schema_item, dict) or 'type' not in schema_item:
            # Not a leaf node, skip validation
            return True

        expected_type = schema_item['type']
        type_map = {
            'str': str,
            'int': int,
            'float': (int, float),
            'bool': bool,
            'list': list,
            'dict': dict,
        }

        # Allow None for optional values
        if value is None:
            return True

        if expected_type in type_map:
            # bool is an int subclass; don't let True pass as a number
            if expected_type in ('int', 'float') and isinstance(value, bool):
                logger.warning(f"Config validation: '{path}' should be {expected_type}, got bool. Using default.")
                return False
            if not isinstance(value, type_map[expected_type]):
                logger.warning(
                    f"Config validation: '{path}' should be {expected_type}, "
                    f"got {type(value).__name__}. Using default."
                )
                return False

        if 'options' in schema_item and value not in schema_item['options']:
            logger.warning(
                f"Config validation: '{path}' value '{value}' not in allowed options "
                f"{schema_item['options']}. Using default."
            )
            return False

        return True

    def _validate_config_section(self, user_section, schema_section, path=""):
        """Recursively validate a config section against schema."""
        if not isinstance(user_section, dict) or not isinstance(schema_section, dict):
            return

        for key, schema_value in schema_section.items():
            current_path = f"{path}.{key}" if path else key

            if key not in user_section:
                continue

            user_value = user_section[key]

            # If schema_value has 'type', it's a leaf node - validate it
            if isinstance(schema_value, dict) and 'type' in schema_value:
                if not self._validate_config_value(user_value, schema_value, current_path):
                    user_section[key] = schema_value.get('value')
            elif isinstance(schema_value, dict) and isinstance(user_value, dict):
                self._validate_config_section(user_value, schema_value, current_path)

    def load_user_config(self, config_path=None):
        """Load user configuration and merge with default config."""
        def deep_update(source, overrides):
            for key, value in overrides.items():
                if isinstance(value, dict) and isinstance(source.get(key), dict):
                    deep_update(source[key], value)
                else:
                    source[key] = value

        config_path = Path(config_path) if config_path else self.config_path
        if not config_path.is_file():
            return

        try:
            with open(config_path, 'r', encoding='utf-8') as file:
                user_config = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            logger.error(f"Error in configuration file {config_path}: {e}. Using default configuration.")
            return

        if not isinstance(user_config, dict):
            logger.error(f"Configuration file {config_path} is not a mapping. Using default configuration.")
            return

        # Validate before merging
        self._validate_config_section(user_config, self.schema)
        deep_update(self.config, user_config)

    def save_config(self, config_path=None):
        """Save the current configuration to a YAML file (atomic write with retries)."""
        filepath = Path(config_path) if config_path else self.config_path
        filepath.parent.mkdir(parents=True, exist_ok=True)
        temp_path = filepath.with_suffix('.tmp')

        # Write to temp file first
        with open(temp_path, 'w', encoding='utf-8') as file:
            yaml.safe_dump(self.config, file, default_flow_style=False)
            file.flush()
            os.fsync(file.fileno())

        # Try to replace the original file, with retries for Windows file locks
        max_retries = 3
        retry_delay = 0.1
        for attempt in range(max_retries):
            try:
                temp_path.replace(filepath)
                break
            except PermissionError as e:
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    temp_path.unlink(missing_ok=True)
                    raise RuntimeError(f"Failed to save config due to file lock: {e}") from e

    def config_file_exists(self):
        """Check if a user config file exists."""
        return self.config_path.is_file()

    def data_dir(self) -> Path:
        """Base directory for persisted meetings and speaker profiles."""
        configured = self.get_config_value('storage', 'data_dir')
        return Path(configured).expanduser() if configured else Path.home() / ".voxkey"

    def meetings_dir(self) -> Path:
        configured = self.get_config_value('storage', 'meetings_dir')
        return Path(configured).expanduser() if configured else self.data_dir() / "meetings"

    def profiles_file(self) -> Path:
        configured = self.get_config_value('storage', 'profiles_file')
        return Path(configured).expanduser() if configured else self.data_dir() / "speakers.json"


class TextProcessor:
    """Cleans up transcribed text before it is delivered."""

    # Filler words to remove (case insensitive)
    FILLERS = [
        r'\bum+\b', r'\buh+\b', r'\bah+\b', r'\beh+\b',
        r'\bhmm+\b', r'\bmm+\b', r'\bhm+\b',
    ]

    # Whisper hallucinations - ONLY removed at the end of a transcription
    TRAILING_HALLUCINATIONS = [
        r"\s*thank(s| you)( for watching)?\.?\s*$",
        r"\s*subscribe to (my|the|our) channel\.?\s*$",
        r"\s*(please |don'?t forget to )?(like and )?subscribe\.?\s*$",
        r"\s*see you (in the )?next (one|video|time)\.?\s*$",
        r"\s*\[(music|applause)\]\s*$",
        r"\s*♪.*$",
    ]

    def __init__(self, config: ConfigManager):
        self.config = config

    def apply_name_replacements(self, text):
        """Apply configured name spelling corrections."""
        replacements = self.config.get_config_value('post_processing', 'name_replacements') or {}
        for wrong, correct in replacements.items():
            # Case-insensitive word boundary replacement
            pattern = r'\b' + re.escape(str(wrong)) + r'\b'
            text = re.sub(pattern, str(correct), text, flags=re.IGNORECASE)
        return text

    def remove_prompt_leak(self, text):
        """Remove the initial prompt if it leaked into the transcription."""
        initial_prompt = self.config.get_config_value('model_options', 'initial_prompt') or ''
        for line in initial_prompt.strip().split('\n'):
            line = line.strip()
            if len(line) > 10 and line in text:
                text = text.replace(line, '')
        return text

    @classmethod
    def remove_filler_words(cls, text):
        """Remove common filler words and hallucinated outros."""
        for pattern in cls.TRAILING_HALLUCINATIONS:
            text = re.sub(pattern, '', text, flags=re.IGNORECASE)

        for filler in cls.FILLERS:
            text = re.sub(filler, '', text, flags=re.IGNORECASE)

        # Clean up resulting issues
        text = re.sub(r'\s+', ' ', text)
        text = re.sub(r'\s+([,.?!])', r'\1', text)
        text = re.sub(r'([,.?!])\s*\1+', r'\1', text)
        text = re.sub(r',\s*\.', '.', text)
        text = re.sub(r'^\s*,\s*', '', text)
        return text.strip()

    @staticmethod
    def ensure_ending_punctuation(text):
        """Ensure text ends with proper punctuation."""
        text = text.strip()
        if text and text[-1] not in '.?!':
            text += '.'
        return text

    def process(self, transcription):
        """Apply all post-processing steps to the transcription."""
        if not transcription or not transcription.strip():
            return transcription
        if not self.config.get_config_value('post_processing', 'enabled'):
            return transcription.strip()

        text = transcription.strip()
        text = self.remove_prompt_leak(text)
        text = self.remove_filler_words(text)
        text = self.apply_name_replacements(text)
        text = re.sub(r'\s+', ' ', text).strip()
        if not re.search(r'\w', text):
            # Nothing but fillers/punctuation left
            return ''
        if self.config.get_config_value('post_processing', 'ensure_punctuation'):
            text = self.ensure_ending_punctuation(text)
        return text
