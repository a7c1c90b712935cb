"""
Configuration subsystem for Questline.

- **config.py**: static configuration from environment variables (.env)
- **manager.py**: progression balance configuration from YAML defaults

Usage
-----
```python
from questline.core.config import Config
from questline.core.config.manager import ConfigManager

db_url = Config.DATABASE_URL
multiplier = ConfigManager.get("scoring.task.priority_multipliers.high", 1.0)
```

ConfigManager is imported from its module directly because it depends on
the logging subsystem, which itself reads Config.
"""

from questline.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
