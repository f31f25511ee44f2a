"""Configuration module"""
from .settings import Settings, get_settings, load_provider_configs

__all__ = ["Settings", "get_settings", "load_provider_configs"]
