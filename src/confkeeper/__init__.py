"""confkeeper - lifecycle management for a service's config.json.

Backups, verification, restore, validation and migration from legacy .env
files.
"""

__version__ = "0.1.0"
