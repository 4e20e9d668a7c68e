from taskflow.config.loader import YamlConfigLoader
from taskflow.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
