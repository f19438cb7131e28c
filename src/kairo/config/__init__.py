"""Provider configuration document and its transactional writer."""

from kairo.config.document import (
    ConfigDocument,
    Provider,
    load_config,
    load_or_new_config,
    migrate_legacy_config,
    save_config,
)
from kairo.config.transaction import ConfigTransaction, with_config_transaction

__all__ = [
    "ConfigDocument",
    "ConfigTransaction",
    "Provider",
    "load_config",
    "load_or_new_config",
    "migrate_legacy_config",
    "save_config",
    "with_config_transaction",
]
