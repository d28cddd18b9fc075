"""
Configuration loader for spending analysis.

Loads settings from YAML config files.
"""

import os

import yaml

DEFAULT_SETTINGS_FILE = 'settings.yaml'


def load_settings(config_dir, settings_file=DEFAULT_SETTINGS_FILE):
    """Load main settings from settings.yaml (or specified file)."""
    settings_path = os.path.join(config_dir, settings_file)

    if not os.path.exists(settings_path):
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path, 'r', encoding='utf-8') as f:
        try:
            settings = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {settings_path}: {e}")

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"{settings_path} must contain a mapping of settings")
    return settings


def resolve_source(source, config_dir):
    """
    Resolve a data source entry to an absolute file path.

    Accepts either a mapping with 'file' (and optional 'name') or a bare
    path string. Paths are relative to the parent of the config directory,
    falling back to the config directory itself.

    Returns the source dict with an added '_filepath' key.
    """
    if isinstance(source, str):
        source = {'file': source}
    elif isinstance(source, dict):
        source = source.copy()
    else:
        raise ValueError(f"Invalid data source entry: {source!r}")

    if not source.get('file'):
        raise ValueError(
            f"Data source '{source.get('name', 'unknown')}' must specify 'file'"
        )

    filepath = os.path.normpath(os.path.join(config_dir, '..', source['file']))
    if not os.path.exists(filepath):
        alt = os.path.normpath(os.path.join(config_dir, source['file']))
        if os.path.exists(alt):
            filepath = alt

    source.setdefault('name', os.path.basename(source['file']))
    source['_filepath'] = filepath
    return source


def resolve_merchant_aliases(aliases):
    """Normalize merchant_aliases entries to (match, name) pairs."""
    resolved = []
    for entry in aliases or []:
        if not isinstance(entry, dict) or 'match' not in entry or 'name' not in entry:
            raise ValueError(
                f"merchant_aliases entries need 'match' and 'name', got {entry!r}"
            )
        resolved.append((entry['match'], str(entry['name'])))
    return resolved


def load_config(config_dir, settings_file=DEFAULT_SETTINGS_FILE):
    """Load all configuration files.

    Args:
        config_dir: Path to config directory containing settings.yaml
        settings_file: Name of the settings file to load (default: settings.yaml)

    Returns:
        dict with all configuration values
    """
    config_dir = os.path.abspath(config_dir)

    if not os.path.isdir(config_dir):
        raise FileNotFoundError(f"Config directory not found: {config_dir}")

    config = load_settings(config_dir, settings_file)

    config['data_sources'] = [
        resolve_source(source, config_dir)
        for source in (config.get('data_sources') or [])
    ]

    # Optional replacement for the built-in category schema
    categories_file = config.get('categories_file')
    if categories_file:
        categories_path = os.path.join(config_dir, categories_file)
        if not os.path.exists(categories_path):
            raise FileNotFoundError(f"Categories file not found: {categories_path}")
        config['categories_file'] = categories_path
    else:
        config['categories_file'] = None

    config['merchant_aliases'] = resolve_merchant_aliases(config.get('merchant_aliases'))

    config['_config_dir'] = config_dir
    config['title'] = config.get('title', 'Spending Analysis')

    # Currency format for display (default: USD)
    config['currency_format'] = config.get('currency_format', '${amount}')
    config['log_level'] = config.get('log_level')

    return config
