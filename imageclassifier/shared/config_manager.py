"""
YAML configuration for the training script.

Provides utilities for:
- Generating a YAML template from the current CLI defaults
- Loading YAML configs
- Merging YAML configs with CLI arguments (CLI takes priority)
- Validating parameter ranges and choices
"""

import os
import sys
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


TRAIN_GROUPS = [
    ('DATA & OUTPUT', ['images', 'train_tags', 'test_tags', 'data', 'val_split', 'min_count', 'out', 'resume', 'resume_optimizer', 'device']),
    ('MODEL SETTINGS', ['img_size', 'weights', 'feature_layer']),
    ('TRAINING HYPERPARAMETERS', ['optimizer', 'epochs', 'batch', 'lr', 'weight_decay', 'lbfgs_max_iter', 'patience']),
    ('DATALOADER SETTINGS', ['num_workers', 'pin_memory', 'prefetch_factor']),
    ('MIXED PRECISION', ['amp']),
    ('AUGMENTATION', ['augment']),
    ('AFTER TRAINING', ['interactive']),
]


def _format_value(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str) and (',' in value or ':' in value or value == ''):
        return f'"{value}"'
    return str(value)


def generate_yaml_template(output_path: str, config_dict: Dict[str, Any], header_comment: str = "Training Configuration", groups=None):
    """Generate a YAML config file with section headers and default values.

    Args:
        output_path: Path to write YAML file
        config_dict: Flat dictionary of config parameters
        header_comment: Header comment for the YAML file
        groups: Optional list of (section_name, keys); defaults to TRAIN_GROUPS
    """
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    groups = TRAIN_GROUPS if groups is None else groups

    with open(output_path, 'w') as f:
        f.write(f"# {header_comment}\n")
        f.write("# Generated automatically - edit as needed\n")
        f.write("# \n")
        f.write("# CLI arguments override values in this file\n")
        f.write("# Use --no-wait to skip confirmation prompt\n")
        f.write("# Use --regen-args to regenerate this file from CLI args\n\n")

        written_keys = set()
        for section_name, keys in groups:
            section_keys = [k for k in keys if k in config_dict]
            if not section_keys:
                continue
            f.write(f"# === {section_name} ===\n")
            for key in section_keys:
                f.write(f'{key}: {_format_value(config_dict[key])}\n')
                written_keys.add(key)
            f.write('\n')

        remaining_keys = [k for k in config_dict if k not in written_keys]
        if remaining_keys:
            f.write("# === OTHER SETTINGS ===\n")
            for key in remaining_keys:
                f.write(f'{key}: {_format_value(config_dict[key])}\n')

    print(f"✓ Generated config template: {output_path}")


def load_yaml_config(yaml_path: str) -> Dict[str, Any]:
    """Load YAML config file and return as dictionary.

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        yaml.YAMLError: If YAML is malformed
        ValueError: If the top level is not a mapping
    """
    if not os.path.exists(yaml_path):
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file {yaml_path} must contain a mapping, got {type(config).__name__}")

    print(f"✓ Loaded config from: {yaml_path}")
    return config


def flatten_dict(d: Dict[str, Any], parent_key: str = '', sep: str = '.') -> Dict[str, Any]:
    """Flatten nested dictionary into dot-notation keys.

    Example:
        {'model': {'weights': 'v1'}} -> {'model.weights': 'v1'}
    """
    items = []
    for k, v in d.items():
        new_key = f"{parent_key}{sep}{k}" if parent_key else k
        if isinstance(v, dict):
            items.extend(flatten_dict(v, new_key, sep=sep).items())
        else:
            items.append((new_key, v))
    return dict(items)


def merge_configs(yaml_config: Dict[str, Any], cli_args: Dict[str, Any], cli_defaults: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge YAML config with CLI arguments. Explicit CLI arguments take priority.

    A CLI value equal to its parser default is treated as "not given" when
    cli_defaults is provided, so YAML values are not clobbered by defaults.

    Example:
        >>> merge_configs({'epochs': 5}, {'epochs': 10, 'lr': 0.1}, {'epochs': 10, 'lr': 1.0})
        {'epochs': 5, 'lr': 0.1}
    """
    flat_yaml = flatten_dict(yaml_config) if any(isinstance(v, dict) for v in yaml_config.values()) else dict(yaml_config)
    merged = dict(flat_yaml)
    cli_defaults = cli_defaults or {}

    for key, cli_value in cli_args.items():
        if key not in merged:
            merged[key] = cli_value
        elif key in cli_defaults and cli_value == cli_defaults[key]:
            continue
        elif cli_value != merged[key]:
            merged[key] = cli_value

    return merged


def wait_for_user_edit(config_path: str):
    """Pause so the user can edit the generated config, Ctrl+C cancels."""
    print(f"\n{'='*70}")
    print(f"Config file generated: {config_path}")
    print(f"{'='*70}")
    print("\nPlease review and edit the configuration file if needed.")
    print("Press Enter to continue with the current config, or Ctrl+C to cancel...")
    print(f"{'='*70}\n")

    try:
        input()
        print("✓ Continuing with configuration...\n")
    except KeyboardInterrupt:
        print("\n\n✗ Cancelled by user.")
        sys.exit(0)


def validate_param_range(value: Any, param_name: str, min_val: Optional[float] = None,
                         max_val: Optional[float] = None, choices: Optional[list] = None) -> bool:
    """Validate parameter is within acceptable range or choices.

    Raises:
        ValueError: If validation fails
    """
    if value is None:
        return True

    if choices is not None:
        if value not in choices:
            raise ValueError(f"{param_name} must be one of {choices}, got: {value}")

    if min_val is not None and isinstance(value, (int, float)):
        if value < min_val:
            raise ValueError(f"{param_name} must be >= {min_val}, got: {value}")

    if max_val is not None and isinstance(value, (int, float)):
        if value > max_val:
            raise ValueError(f"{param_name} must be <= {max_val}, got: {value}")

    return True


def validate_config(config: Dict[str, Any], validation_rules: Dict[str, Dict[str, Any]]) -> bool:
    """Validate entire config against rules.

    Args:
        config: Flat config dictionary
        validation_rules: Dict mapping param names to validation rules
            Example: {'epochs': {'min': 1}, 'optimizer': {'choices': ['lbfgs', 'adam']}}
    """
    for param, rules in validation_rules.items():
        if param in config:
            validate_param_range(
                config[param],
                param,
                min_val=rules.get('min'),
                max_val=rules.get('max'),
                choices=rules.get('choices')
            )

    return True

