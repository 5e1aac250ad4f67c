import os
import json
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Load environment variables from .env file
load_dotenv()

# Get the config directory path (where this file is located)
CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# Load configuration from config.json
config_path = CONFIG_DIR / 'config.json'
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

# CONFIG is the in-memory runtime representation of config.json; derived values are added below.
CONFIG['project_root'] = str(PROJECT_ROOT)

if 'paths' not in CONFIG:
    CONFIG['paths'] = {}

user_data_base_name = CONFIG.get('paths', {}).get('user_data_base_dir_name', 'user_data')
sessions_subdir_name = CONFIG.get('paths', {}).get('sessions_subdir_name', 'sessions')

# Calculate and store full absolute paths in the 'paths' dictionary
CONFIG['paths']['user_data_full_path'] = str(PROJECT_ROOT / user_data_base_name)
CONFIG['paths']['sessions_full_path'] = str(PROJECT_ROOT / user_data_base_name / sessions_subdir_name)

# --- System Prompt Loading ---

# Per-aspect analysis prompt template; {aspect_focus} and {severity_levels} are filled by the dispatcher
analysis_prompt_path = CONFIG_DIR / 'analysis_system_prompt.txt'
try:
    with open(analysis_prompt_path, 'r', encoding='utf-8') as f:
        CONFIG['analysis_system_prompt'] = f.read().strip()
except FileNotFoundError:
    raise FileNotFoundError(
        f"Analysis system prompt file not found: {analysis_prompt_path}\n"
        f"Please ensure analysis_system_prompt.txt exists in the config directory."
    )

chat_prompt_path = CONFIG_DIR / 'chat_system_prompt.txt'
try:
    with open(chat_prompt_path, 'r', encoding='utf-8') as f:
        CONFIG['chat_system_prompt'] = f.read().strip()
except FileNotFoundError:
    raise FileNotFoundError(
        f"Chat system prompt file not found: {chat_prompt_path}\n"
        f"Please ensure chat_system_prompt.txt exists in the config directory."
    )

# Environment variables. None of them is required at import time: a missing model key
# surfaces as ModelUnavailable when the gateway is called.
ENV = {
    'LLM_API_KEY': os.getenv('LLM_API_KEY') or os.getenv('NEBIUS_API_KEY'),
    'OPENAI_API_KEY': os.getenv('OPENAI_API_KEY'),
    'AI_GATEWAY_ACCOUNT_ID': os.getenv('AI_GATEWAY_ACCOUNT_ID'),
    'AI_GATEWAY_ID': os.getenv('AI_GATEWAY_ID'),
}

def validate_config():
    """Validate that all required configuration sections are present.

    Model credentials are optional here and checked by the provider layer when a client is
    built, so the service can start (and answer history/stats queries) without them.
    """
    required_sections = ['llm', 'session_store']
    for section in required_sections:
        if section not in CONFIG:
            raise ValueError(f"Missing configuration section: {section}")

    # Check if all required LLM models are configured
    required_models = ['analysis', 'chat']
    for model in required_models:
        if model not in CONFIG['llm'].get('models', {}):
            raise ValueError(f"Missing configuration for LLM model: {model}")

# Validate configuration on module import
validate_config()

# --- Helper function to get config value from CONFIG or environment variable ---
def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Retrieves a configuration value.
    Priority:
    1. Environment variable (if env_var_name is provided and variable is set).
    2. Value from CONFIG dictionary (using json_keys).
    3. default_value.
    """
    # Try environment variable first
    if env_var_name:
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            # Attempt to match type of default_value if it's int or bool
            if isinstance(default_value, bool):
                if env_value.lower() == 'true': return True
                if env_value.lower() == 'false': return False
            elif isinstance(default_value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass # Fall through to JSON or default if not a valid int
            elif isinstance(default_value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value # Return as string if no type match or not int/bool

    # Try from CONFIG dictionary (loaded from JSON)
    current_level = CONFIG
    try:
        for key in json_keys:
            current_level = current_level[key]
        if isinstance(current_level, (str, int, bool, float, list, dict)):
             return current_level
    except (KeyError, TypeError):
        pass # Key not found or CONFIG structure not as expected, fall through to default

    # Fallback to default value
    return default_value

# --- Session store settings (env overrides for deployment) ---
CONFIG['session_store']['history_limit'] = get_config_value(
    ['session_store', 'history_limit'], 'SESSION_HISTORY_LIMIT', 50
)
CONFIG['session_store']['default_max_age_ms'] = get_config_value(
    ['session_store', 'default_max_age_ms'], 'SESSION_MAX_AGE_MS', 7 * 24 * 60 * 60 * 1000
)
CONFIG['session_store']['persistence'] = get_config_value(
    ['session_store', 'persistence'], 'SESSION_PERSISTENCE', 'file'
)
CONFIG['session_store']['snapshot_path'] = str(
    Path(CONFIG['paths']['sessions_full_path'])
    / CONFIG['session_store'].get('snapshot_filename', 'sessions.json')
)
CONFIG['llm']['timeout_s'] = get_config_value(['llm', 'timeout_s'], 'LLM_TIMEOUT_S', 20.0)

# --- Logging Configuration ---
# Environment variables take precedence over config.json; an empty LOG_FILE_PATH disables file logging.
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/code_quality_assistant.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024), # 5MB
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'format': get_config_value(
        ['logging', 'format'],
        'LOG_FORMAT',
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s'
    ),
    'date_format': get_config_value(
        ['logging', 'date_format'],
        'LOG_DATE_FORMAT',
        '%Y-%m-%d %H:%M:%S'
    )
}

# --- Setup Application Logging ---
setup_app_logging(config=CONFIG.get('logging'))

config_init_logger = logging.getLogger(__name__) # Get logger for this module AFTER logging is setup
config_init_logger.info("[config_init] Logging initialized from config/__init__.py using setup_app_logging.")
