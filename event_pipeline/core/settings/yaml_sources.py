"""YAML config sources with conf.d directory support.

Each settings domain can be configured from an optional base file plus a
drop-in directory, both under ``conf/`` by default:

- ``conf/kafka.yaml``      (base configuration)
- ``conf/kafka.d/*.yaml``  (override files, merged alphabetically)

YAML sits between init kwargs and environment variables in the precedence
chain, so it is intended for local development and container images.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings.sources.providers.yaml import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source that also reads a ``<name>.d`` directory.

    The base directory can be overridden per domain with an environment
    variable (for example ``KAFKA_CONFIG_DIR=/etc/event-pipeline``).
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str,
        confd_dir: str | None = None,
        config_dir_env: str = "CONFIG_DIR",
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        config_base = Path(os.getenv(config_dir_env, os.getenv("CONFIG_DIR", base_dir)))

        yaml_files: list[Path] = []

        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files if yaml_files else None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def _domain_source(settings_cls: type[BaseSettings], domain: str) -> ConfDYamlConfigSettingsSource:
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file=f"{domain}.yaml",
        confd_dir=f"{domain}.d",
        config_dir_env=f"{domain.upper()}_CONFIG_DIR",
    )


# ============================================================================
# Factory functions for each settings domain
# ============================================================================


def create_kafka_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for KafkaSettings (conf/kafka.yaml, conf/kafka.d/)."""
    return _domain_source(settings_cls, "kafka")


def create_redis_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for RedisSettings (conf/redis.yaml, conf/redis.d/)."""
    return _domain_source(settings_cls, "redis")


def create_db_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for PostgresSettings (conf/db.yaml, conf/db.d/)."""
    return _domain_source(settings_cls, "db")


def create_outbox_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for OutboxSettings (conf/outbox.yaml, conf/outbox.d/)."""
    return _domain_source(settings_cls, "outbox")


def create_projection_yaml_source(
    settings_cls: type[BaseSettings],
) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for ProjectionSettings (conf/projection.yaml, conf/projection.d/)."""
    return _domain_source(settings_cls, "projection")


def create_logging_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for LoggingSettings (conf/logging.yaml, conf/logging.d/)."""
    return _domain_source(settings_cls, "logging")
