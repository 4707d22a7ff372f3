"""Configuration module for the tenant admin console."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
