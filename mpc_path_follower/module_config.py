"""
Controller configuration loader.

Loads config/controller.yaml and builds the MPCConfig used by every
solve. Falls back to the documented defaults if the file is missing.

Horizon length, dt, actuator limits and Lf come only from the file; the
cost weights can additionally be overridden at process start from an
ordered list of numbers (command line), where unspecified trailing
values keep the configured ones.

Usage:
    from mpc_path_follower.module_config import load_module_config, build_mpc_config
    config = load_module_config()
    mpc_config = build_mpc_config(config, weight_overrides=[2, 10])
"""

import copy
import logging
import math
import os
from typing import Optional, Sequence

import yaml

from .pympc_core.horizon import CostWeights
from .pympc_core.solver import MPCConfig

logger = logging.getLogger(__name__)

# Defaults mirror config/controller.yaml; used when the file is missing
_DEFAULTS = {
    'horizon': {
        'steps': 8,
        'dt': 0.1,
    },
    'vehicle': {
        'lf': 2.67,
        'reference_velocity': 50.0,
    },
    'limits': {
        'max_steering_deg': 25.0,
        'max_acceleration': 1.0,
    },
    'polynomial': {
        'order': 3,
    },
    'solver': {
        'max_cpu_time': 0.05,
        'max_iter': 200,
        'tolerance': 1.0e-6,
    },
    'weights': list(CostWeights().as_tuple()),
    'latency': {
        'max_latency': 1.0,
    },
    'session': {
        'actuation_delay': 0.1,
        'reference_points': 25,
        'reference_spacing': 2.5,
    },
}

_WEIGHT_NAMES = ('cte', 'epsi', 'speed', 'steering', 'throttle',
                 'steering_rate', 'throttle_rate')


def load_module_config(config_path=None):
    """Load controller configuration from YAML.

    Args:
        config_path: Path to controller.yaml. If None, searches the
            package config/ directory.

    Returns:
        dict with every section of _DEFAULTS, file values merged over
        the defaults one level deep.
    """
    if config_path is None:
        config_path = _find_config_file('controller.yaml')

    config = copy.deepcopy(_DEFAULTS)

    if config_path is not None and os.path.isfile(config_path):
        try:
            with open(config_path, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read %s, using defaults: %s", config_path, e)
            file_config = {}

        for section in _DEFAULTS:
            if section not in file_config:
                continue
            if section == 'weights':
                config['weights'] = _parse_weights(file_config['weights'])
            elif isinstance(file_config[section], dict):
                config[section].update(file_config[section])
    elif config_path is not None:
        logger.warning("Config file not found: %s, using defaults", config_path)

    return config


def apply_weight_overrides(weights: Sequence[float],
                           overrides: Optional[Sequence[float]]) -> list:
    """Replace the leading weights with the ordered override values."""
    weights = list(weights)
    if not overrides:
        return weights
    if len(overrides) > len(weights):
        raise ValueError(
            f"At most {len(weights)} weight overrides allowed, got {len(overrides)}")
    for i, value in enumerate(overrides):
        weights[i] = float(value)
    return weights


def build_mpc_config(config=None, weight_overrides=None) -> MPCConfig:
    """Turn a loaded configuration dict into an MPCConfig."""
    if config is None:
        config = load_module_config()

    weights = apply_weight_overrides(config['weights'], weight_overrides)
    return MPCConfig(
        horizon=int(config['horizon']['steps']),
        dt=float(config['horizon']['dt']),
        lf=float(config['vehicle']['lf']),
        reference_velocity=float(config['vehicle']['reference_velocity']),
        max_steering=math.radians(float(config['limits']['max_steering_deg'])),
        max_acceleration=float(config['limits']['max_acceleration']),
        polynomial_order=int(config['polynomial']['order']),
        weights=CostWeights.from_sequence(weights),
        max_cpu_time=float(config['solver']['max_cpu_time']),
        max_iter=int(config['solver']['max_iter']),
        tolerance=float(config['solver']['tolerance']),
    )


def _parse_weights(value):
    """Weights given either as an ordered list or as a name -> value mapping."""
    defaults = list(_DEFAULTS['weights'])
    if isinstance(value, dict):
        unknown = set(value) - set(_WEIGHT_NAMES)
        if unknown:
            raise ValueError(f"Unknown cost weights in config: {sorted(unknown)}")
        return [float(value.get(name, default))
                for name, default in zip(_WEIGHT_NAMES, defaults)]
    if isinstance(value, (list, tuple)):
        return apply_weight_overrides(defaults, value)
    raise ValueError(f"'weights' must be a list or mapping, got {type(value).__name__}")


def _find_config_file(filename):
    """Search for a config file in standard locations."""
    # 1. Explicit override
    env_dir = os.environ.get('MPC_PATH_FOLLOWER_CONFIG_DIR')
    if env_dir:
        candidate = os.path.join(env_dir, filename)
        if os.path.isfile(candidate):
            return candidate

    # 2. Package config/ directory (source tree and installed)
    candidate = os.path.join(os.path.dirname(__file__), 'config', filename)
    if os.path.isfile(candidate):
        return os.path.abspath(candidate)

    return None
