"""
Configuration package.

- `Config`: static, environment-driven settings (python-dotenv).
- `ConfigManager` (in `triviaboard.core.config.manager`): layered YAML
  defaults with dot-notation lookups. Not re-exported here because it
  depends on the logging subsystem, which itself reads `Config`.
"""

from triviaboard.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
