"""
コアモジュール

設定、データベース、データセット、モデル定義を提供する。
"""

from contract_dataset.core.config import ConfigError, require_api_key, settings
from contract_dataset.core.database import (
    BatchImportError,
    get_connection,
    get_contract,
    get_db_stats,
    import_batch,
    init_db,
    upsert_contract,
)
from contract_dataset.core.dataset import (
    DATASET_COLUMNS,
    DatasetStats,
    DatasetWriter,
    InputError,
    parse_address_list,
    read_address_list,
    read_dataset,
    read_metadata_csv,
    summarize_dataset,
    write_dataset,
)
from contract_dataset.core.models import (
    AddressEntry,
    ContractRecord,
    ImportStats,
    chain_id_to_name,
    detect_contract_type,
)

__all__ = [
    "settings",
    "require_api_key",
    "ConfigError",
    "get_connection",
    "init_db",
    "get_db_stats",
    "get_contract",
    "upsert_contract",
    "import_batch",
    "BatchImportError",
    "DATASET_COLUMNS",
    "DatasetWriter",
    "DatasetStats",
    "InputError",
    "parse_address_list",
    "read_address_list",
    "read_dataset",
    "read_metadata_csv",
    "summarize_dataset",
    "write_dataset",
    "AddressEntry",
    "ContractRecord",
    "ImportStats",
    "chain_id_to_name",
    "detect_contract_type",
]
