from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from typing import Any, cast

import boto3
from botocore.config import Config

from .backoff import Backoff, Sleep, build_backoff
from .batch import BATCH_GET_LIMIT, BATCH_WRITE_LIMIT
from .errors import ValidationError
from .instrumentation import AwsCallMetric, InstrumentedClient

ENV_PREFIX = "DYNADAPTER_"


@dataclass(frozen=True)
class AdapterConfig:
    """Adapter settings.

    ``backoff`` is ``None``, a strategy name (``"constant"``, ``"exponential"``)
    or a ``(name, options)`` pair, e.g. ``("exponential", {"base_backoff": 0.2,
    "ceiling": 5})``. Pagination and batch reissues build a fresh backoff from
    it for every request.
    """

    region: str | None = None
    endpoint_url: str | None = None
    namespace: str | None = None
    batch_get_size: int = BATCH_GET_LIMIT
    batch_write_size: int = BATCH_WRITE_LIMIT
    backoff: Any = None
    max_throttle_retries: int = 5
    batch_max_retries: int | None = None
    warn_on_scan: bool = True
    store_attribute_with_nil_value: bool = False
    sync_retry_wait_seconds: float = 2.0
    sync_retry_max_times: int = 60
    read_capacity: int = 100
    write_capacity: int = 20
    connect_timeout: float = 1.0
    read_timeout: float = 3.0
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if not 0 < self.batch_get_size <= BATCH_GET_LIMIT:
            raise ValidationError(f"batch_get_size must be between 1 and {BATCH_GET_LIMIT}")
        if not 0 < self.batch_write_size <= BATCH_WRITE_LIMIT:
            raise ValidationError(f"batch_write_size must be between 1 and {BATCH_WRITE_LIMIT}")
        if self.batch_max_retries is not None and self.batch_max_retries < 0:
            raise ValidationError("batch_max_retries must be >= 0")
        if self.sync_retry_max_times < 0 or self.sync_retry_wait_seconds < 0:
            raise ValidationError("sync retry settings must be >= 0")
        # Fail at construction on an unknown strategy rather than on first use.
        build_backoff(self.backoff, sleep=lambda _: None)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ, **overrides: Any) -> AdapterConfig:
        """Read ``DYNADAPTER_<FIELD>`` variables; ``overrides`` win over the environment.

        ``AWS_REGION`` / ``AWS_DEFAULT_REGION`` are used when no region is given.
        ``DYNADAPTER_BACKOFF`` accepts ``constant``, ``constant:<seconds>``,
        ``exponential`` or ``exponential:<base>:<ceiling>``.
        """
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            if f.name == "backoff":
                values[f.name] = _parse_backoff(raw)
            else:
                values[f.name] = _coerce(f.name, cast(str, f.type), raw)

        if "region" not in values:
            region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION")
            if region:
                values["region"] = region

        values.update(overrides)
        return cls(**values)

    def table_name(self, table: str) -> str:
        if not self.namespace:
            return table
        prefix = f"{self.namespace}_"
        if table.startswith(prefix):
            return table
        return prefix + table

    def build_backoff(self, *, sleep: Sleep = time.sleep) -> Backoff | None:
        return build_backoff(self.backoff, sleep=sleep)

    def create_boto3_config(self) -> Config:
        return Config(
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            retries={"max_attempts": self.max_attempts, "mode": "adaptive"},
        )

    def create_client(
        self,
        *,
        session: Any | None = None,
        metrics: Callable[[AwsCallMetric], None] | None = None,
    ) -> Any:
        sess = session or boto3.session.Session(region_name=self.region)
        client = cast(Any, sess).client(
            "dynamodb",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=self.create_boto3_config(),
        )
        return InstrumentedClient(client, on_call=metrics)


def _coerce(name: str, annotation: str, raw: str) -> Any:
    try:
        if annotation.startswith("bool"):
            lowered = raw.lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
            raise ValueError(raw)
        if annotation.startswith("int"):
            return int(raw)
        if annotation.startswith("float"):
            return float(raw)
    except ValueError as err:
        raise ValidationError(f"invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from err
    return raw


def _parse_backoff(raw: str) -> Any:
    name, _, rest = raw.partition(":")
    if not rest:
        return name
    try:
        if name == "constant":
            return (name, float(rest))
        if name == "exponential":
            base, _, ceiling = rest.partition(":")
            options: dict[str, Any] = {"base_backoff": float(base)}
            if ceiling:
                options["ceiling"] = int(ceiling)
            return (name, options)
    except ValueError as err:
        raise ValidationError(f"invalid value for {ENV_PREFIX}BACKOFF: {raw!r}") from err
    raise ValidationError(f"unknown backoff strategy: {name}")
