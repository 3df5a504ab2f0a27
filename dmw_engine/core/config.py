#!/usr/bin/env python
# coding: utf-8

"""
Analysis Configuration
Centralized parameters for windowed differential methylation calling
"""

import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

from dmw_engine.core.exceptions import ConfigError
from dmw_engine.core.records import Context


# ============================================================================
# DEFAULT CONFIGURATION
# ============================================================================

DEFAULT_ANALYSIS = {
    'context': 'CpG',
    'min_coverage': 0,
    'hi_perc': None,
    'window_size': 300,
    'step_size': 100,
    'min_sites': 0,
    'pool': False,
    'q_value': 0.05,
    'min_diff': 25.0,
    'workers': 1,
    'normalization': 'median',
    'normalization_reference': 'min',
    'test': 'auto',
    'overdispersion': 'none',
    'overdispersion_test': 'Chisq',
    'adjust': 'fdr_bh',
    'control_id': 'control',
    'experimental_id': 'experimental',
}

VALID_CHOICES = {
    'normalization': ('median', 'mean'),
    'normalization_reference': ('min', 'max'),
    'test': ('auto', 'fisher', 'lrt'),
    'overdispersion': ('none', 'MN'),
    'overdispersion_test': ('Chisq', 'F'),
    'adjust': ('fdr_bh', 'fdr_by', 'bonferroni', 'holm', 'fdr_tsbh'),
}


# ============================================================================
# CONFIGURATION MANAGER
# ============================================================================

class AnalysisConfig:
    """
    Configuration manager for a differential methylation run.

    Every key of ``DEFAULT_ANALYSIS`` is exposed as an attribute. Values can
    be overridden from a JSON file or keyword arguments and are validated
    on every update.
    """

    def __init__(self, config_file: Optional[str] = None, **overrides):
        """
        Initialize configuration.

        Parameters
        ----------
        config_file : str, optional
            Path to JSON configuration file
        **overrides
            Individual parameter values applied after the file
        """
        for key, value in DEFAULT_ANALYSIS.items():
            setattr(self, key, value)

        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

        if overrides:
            self.update(overrides)
        else:
            self.validate()

    def update(self, values: Dict[str, Any]):
        """Apply parameter overrides and re-validate."""
        unknown = set(values) - set(DEFAULT_ANALYSIS)
        if unknown:
            raise ConfigError(
                'parameters', sorted(unknown), f"one of {sorted(DEFAULT_ANALYSIS)}"
            )
        for key, value in values.items():
            setattr(self, key, value)
        self.validate()

    def load_from_file(self, filepath: str):
        """
        Load configuration from JSON file.

        Parameters
        ----------
        filepath : str
            Path to JSON configuration file
        """
        with open(filepath, 'r') as f:
            config = json.load(f)

        config.pop('last_updated', None)
        self.update(config)

    def save_to_file(self, filepath: str):
        """
        Save current configuration to JSON file.

        Parameters
        ----------
        filepath : str
            Path to save JSON configuration
        """
        config = self.to_dict()
        config['last_updated'] = datetime.now().isoformat()

        with open(filepath, 'w') as f:
            json.dump(config, f, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in DEFAULT_ANALYSIS}

    def validate(self):
        """Check every parameter against its valid range."""
        try:
            self.context = Context.from_label(self.context).value
        except ValueError:
            raise ConfigError('context', self.context, "CpG, CHG or CHH")

        for key in ('min_coverage', 'min_sites'):
            value = getattr(self, key)
            if not _is_int(value) or value < 0:
                raise ConfigError(key, value, "integer >= 0")

        for key in ('window_size', 'step_size', 'workers'):
            value = getattr(self, key)
            if not _is_int(value) or value < 1:
                raise ConfigError(key, value, "integer >= 1")

        if self.hi_perc is not None and not (
            _is_number(self.hi_perc) and 0 < self.hi_perc <= 100
        ):
            raise ConfigError('hi_perc', self.hi_perc, "None or a percentile in (0, 100]")

        if not (_is_number(self.q_value) and 0.0 <= self.q_value <= 1.0):
            raise ConfigError('q_value', self.q_value, "[0, 1]")

        if not (_is_number(self.min_diff) and 0.0 <= self.min_diff <= 100.0):
            raise ConfigError('min_diff', self.min_diff, "[0, 100]")

        if not isinstance(self.pool, bool):
            raise ConfigError('pool', self.pool, "True or False")

        for key, choices in VALID_CHOICES.items():
            value = getattr(self, key)
            if value not in choices:
                raise ConfigError(key, value, f"one of {choices}")

        if self.control_id == self.experimental_id:
            raise ConfigError(
                'experimental_id', self.experimental_id, "different from control_id"
            )

    def __repr__(self) -> str:
        return (
            f"AnalysisConfig(context='{self.context}', "
            f"window_size={self.window_size}, step_size={self.step_size}, "
            f"min_diff={self.min_diff}, q_value={self.q_value})"
        )


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ============================================================================
# GLOBAL CONFIGURATION INSTANCE
# ============================================================================

_global_config = AnalysisConfig()


def get_config() -> AnalysisConfig:
    """
    Get global configuration instance.

    Returns
    -------
    AnalysisConfig
        Global configuration manager

    Examples
    --------
    >>> config = get_config()
    >>> config.window_size
    300
    """
    return _global_config


def load_config(filepath: str):
    """
    Load configuration from a JSON file into the global instance.

    Parameters
    ----------
    filepath : str
        Path to configuration file
    """
    if not filepath.endswith('.json'):
        raise ValueError("Config file must be JSON format")

    _global_config.load_from_file(filepath)


def reset_config():
    """Restore the global instance to the defaults."""
    _global_config.update(dict(DEFAULT_ANALYSIS))


def export_default_config(filepath: str):
    """
    Export default configuration template.

    Examples
    --------
    >>> export_default_config('my_config.json')
    >>> # Edit, then load
    >>> load_config('my_config.json')
    """
    if not filepath.endswith('.json'):
        raise ValueError("Filepath must end with .json")

    AnalysisConfig().save_to_file(filepath)
