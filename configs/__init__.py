"""
Configuration resolution for application roots.

Loads per-domain YAML/JSON files and merges local and environment overlays.
"""

from configs.config_loader import ConfigDocument, ConfigResolver
from configs.config_utils import ConfigMerger, merge_configs

__all__ = ['ConfigDocument', 'ConfigResolver', 'ConfigMerger', 'merge_configs']
