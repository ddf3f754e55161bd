from .settings_manager import SettingsManager, decide_base_url

__all__ = ["SettingsManager", "decide_base_url"]
