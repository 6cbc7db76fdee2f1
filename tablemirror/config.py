"""Configuration loading for tablemirror."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from tablemirror.sync import TableConfig


@dataclass
class RestConfig:
    """PostgREST-compatible endpoint used for counts, fetches and writes."""

    url: str = "http://localhost:3000"
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0


@dataclass
class MQTTConfig:
    """Broker carrying row change events."""

    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "tablemirror"
    username: str | None = None
    password: str | None = None


@dataclass
class PrefilterConfig:
    key: str
    value: Any


@dataclass
class ConditionConfig:
    column: str
    op: str
    value: Any = None


@dataclass
class TableEntryConfig:
    """One mirrored table as declared in the config file."""

    name: str
    primary_keys: list[str] = field(default_factory=lambda: ["id"])
    schema: str = "public"
    optimistic: bool = False
    page_size: int = 1000
    prefilter: PrefilterConfig | None = None
    conditions: list[ConditionConfig] = field(default_factory=list)

    def to_table_config(self) -> "TableConfig":
        """Build the immutable TableConfig used by TableSync.

        Raises:
            ValueError: If a condition uses an unknown operator.
        """
        from tablemirror.backend.base import Prefilter
        from tablemirror.rows import Condition, ConditionSet, TableSchema
        from tablemirror.sync import TableConfig

        conditions = ConditionSet(
            tuple(
                Condition.from_dict({"column": c.column, "op": c.op, "value": c.value})
                for c in self.conditions
            )
        )
        prefilter = (
            Prefilter(key=self.prefilter.key, value=self.prefilter.value)
            if self.prefilter
            else None
        )
        return TableConfig(
            schema=TableSchema(
                name=self.name,
                primary_keys=tuple(self.primary_keys),
                schema=self.schema,
            ),
            conditions=conditions,
            prefilter=prefilter,
            optimistic=self.optimistic,
            page_size=self.page_size,
        )


@dataclass
class Config:
    rest: RestConfig = field(default_factory=RestConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    tables: list[TableEntryConfig] = field(default_factory=list)

    def get_table(self, name: str) -> TableEntryConfig | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TABLEMIRROR_ prefix."""
    return os.environ.get(f"TABLEMIRROR_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # REST overrides
    if url := _get_env("REST_URL"):
        config.rest.url = url
    if timeout := _get_env("REST_TIMEOUT"):
        config.rest.timeout = float(timeout)

    # MQTT overrides
    if broker := _get_env("MQTT_BROKER"):
        config.mqtt.broker = broker
    if port := _get_env("MQTT_PORT"):
        config.mqtt.port = int(port)
    if username := _get_env("MQTT_USERNAME"):
        config.mqtt.username = username
    if password := _get_env("MQTT_PASSWORD"):
        config.mqtt.password = password
    if prefix := _get_env("MQTT_TOPIC_PREFIX"):
        config.mqtt.topic_prefix = prefix

    return config


def _parse_table(data: dict) -> TableEntryConfig:
    """Parse a single table entry."""
    keys = data.get("primary_keys", ["id"])
    if isinstance(keys, str):
        keys = [k.strip() for k in keys.split(",") if k.strip()]

    prefilter = None
    if data.get("prefilter"):
        prefilter = PrefilterConfig(
            key=data["prefilter"]["key"],
            value=data["prefilter"]["value"],
        )

    conditions = []
    for cond_data in data.get("conditions", []):
        conditions.append(
            ConditionConfig(
                column=cond_data["column"],
                op=cond_data.get("op", cond_data.get("operator", "eq")),
                value=cond_data.get("value"),
            )
        )

    return TableEntryConfig(
        name=data["name"],
        primary_keys=list(keys),
        schema=data.get("schema", "public"),
        optimistic=data.get("optimistic", False),
        page_size=data.get("page_size", 1000),
        prefilter=prefilter,
        conditions=conditions,
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse REST config
            if "rest" in data:
                rest_data = data["rest"]
                config.rest = RestConfig(
                    url=rest_data.get("url", config.rest.url),
                    headers=dict(rest_data.get("headers", {})),
                    timeout=rest_data.get("timeout", config.rest.timeout),
                )

            # Parse MQTT config
            if "mqtt" in data:
                mqtt_data = data["mqtt"]
                config.mqtt = MQTTConfig(
                    broker=mqtt_data.get("broker", config.mqtt.broker),
                    port=mqtt_data.get("port", config.mqtt.port),
                    topic_prefix=mqtt_data.get(
                        "topic_prefix", config.mqtt.topic_prefix
                    ),
                    username=mqtt_data.get("username"),
                    password=mqtt_data.get("password"),
                )

            # Parse tables
            if "tables" in data:
                config.tables = [_parse_table(t) for t in data["tables"]]

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
