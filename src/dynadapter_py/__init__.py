from __future__ import annotations

import json
import re
from importlib.resources import files

from .adapter import Adapter
from .backoff import build_backoff, constant_backoff, exponential_backoff
from .batch import BatchGetItem, BatchWriteItem
from .conditions import ConditionTriple, ExpressionCondition, WhereConditions, normalize_conditions
from .config import AdapterConfig
from .criteria import Criteria
from .errors import (
    BatchRetryExceededError,
    ConditionalCheckFailedError,
    DynadapterError,
    InvalidIndexError,
    MissingHashKeyError,
    MissingRangeKeyError,
    RecordNotFoundError,
    Rollback,
    ServiceError,
    TransactionCanceledError,
    UnsupportedOperatorError,
    ValidationError,
)
from .instrumentation import AwsCallMetric, InstrumentedClient
from .model import (
    AttributeConverter,
    IndexSpec,
    ModelDefinition,
    ModelDefinitionError,
    dynadapter_field,
    gsi,
    lsi,
)
from .pagination import Paginator
from .planner import KeyFieldsDecision, QueryPlan, detect_key_fields
from .query import Cursor, Page, decode_cursor, encode_cursor
from .schema import Projection, SchemaCache, SecondaryIndex, TableSchema, build_create_table_request
from .transaction import (
    ConditionCheck,
    Create,
    Delete,
    Find,
    Put,
    TransactionRead,
    TransactionWrite,
    UpdateFields,
    Upsert,
)
from .update_expression import ItemUpdater


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


__all__ = [
    "Adapter",
    "AdapterConfig",
    "AttributeConverter",
    "AwsCallMetric",
    "BatchGetItem",
    "BatchRetryExceededError",
    "BatchWriteItem",
    "ConditionCheck",
    "ConditionTriple",
    "ConditionalCheckFailedError",
    "Create",
    "Criteria",
    "Cursor",
    "Delete",
    "DynadapterError",
    "ExpressionCondition",
    "Find",
    "IndexSpec",
    "InstrumentedClient",
    "InvalidIndexError",
    "ItemUpdater",
    "KeyFieldsDecision",
    "MissingHashKeyError",
    "MissingRangeKeyError",
    "ModelDefinition",
    "ModelDefinitionError",
    "Page",
    "Paginator",
    "Projection",
    "Put",
    "QueryPlan",
    "RecordNotFoundError",
    "Rollback",
    "SchemaCache",
    "SecondaryIndex",
    "ServiceError",
    "TableSchema",
    "TransactionCanceledError",
    "TransactionRead",
    "TransactionWrite",
    "UnsupportedOperatorError",
    "UpdateFields",
    "Upsert",
    "ValidationError",
    "WhereConditions",
    "__repo_version__",
    "__version__",
    "build_backoff",
    "build_create_table_request",
    "constant_backoff",
    "decode_cursor",
    "detect_key_fields",
    "dynadapter_field",
    "encode_cursor",
    "exponential_backoff",
    "gsi",
    "lsi",
    "normalize_conditions",
]
