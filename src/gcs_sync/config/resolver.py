"""Configuration resolver: settings file + command line -> SyncConfig."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from gcs_sync.config.settings import Settings
from gcs_sync.config.sync_config import SyncConfig
from gcs_sync.errors import ConfigurationError
from gcs_sync.services.sync_types import GCS_SCHEME, RemoteDestination, SyncPair
from gcs_sync.storage.credential_resolver import GCSCredentialResolver

logger = logging.getLogger(__name__)

LIST_KEYS = frozenset({"PAIR"})
KNOWN_KEYS = frozenset({
    "CREDENTIALS_PATH",
    "LOCAL_PATH",
    "GCS_BUCKET",
    "PAIR",
    "INTERVAL",
    "DELETE",
    "DRY_RUN",
    "ALLOW_EMPTY_SOURCE",
    "EXCLUDE",
    "PAIR_WORKERS",
    "TRANSFER_WORKERS",
    "MAX_ATTEMPTS",
    "COMPARE",
    "LOG_DIR",
    "HEALTH_FILE",
})

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}

FileValues = Dict[str, Union[str, List[str]]]


@dataclass(frozen=True)
class ConfigOverrides:
    """Values given on the command line. ``None`` means not given."""

    pairs: tuple[str, ...] = ()
    local_path: Optional[str] = None
    gcs_bucket: Optional[str] = None
    interval: Optional[int] = None
    delete: Optional[bool] = None
    dry_run: Optional[bool] = None
    allow_empty_source: Optional[bool] = None
    exclude: tuple[str, ...] = ()
    credentials: Optional[Path] = None
    pair_workers: Optional[int] = None
    transfer_workers: Optional[int] = None
    max_attempts: Optional[int] = None
    compare: Optional[str] = None
    log_dir: Optional[Path] = None
    health_file: Optional[Path] = None


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def parse_config_file(path: Path) -> FileValues:
    """
    Parse a shell-style ``KEY="value"`` settings file.

    Blank lines and ``#`` comments are ignored, an optional ``export`` prefix is
    allowed, and repeated ``PAIR`` lines accumulate. Anything else is rejected
    rather than partially applied.

    Raises:
        ConfigurationError: On unreadable files, malformed lines or unknown keys
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc

    values: FileValues = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        if "=" not in line:
            raise ConfigurationError(f"{path}:{lineno}: expected KEY=value, got {raw!r}")

        key, value = line.split("=", 1)
        key = key.strip()
        value = _strip_quotes(value)

        if key not in KNOWN_KEYS:
            raise ConfigurationError(f"{path}:{lineno}: unknown setting {key!r}")

        if key in LIST_KEYS:
            values.setdefault(key, []).append(value)  # type: ignore[union-attr]
        else:
            values[key] = value

    return values


def parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def parse_int(value: Union[str, int], name: str, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


def parse_pair_spec(spec: str, delete_extraneous: bool = False, base_dir: Optional[Path] = None) -> SyncPair:
    """
    Parse ``LOCAL_PATH=gs://bucket[/prefix]`` into a SyncPair.

    Relative local paths are resolved against ``base_dir`` (default: cwd).
    """
    separator = f"={GCS_SCHEME}"
    index = spec.find(separator)
    if index <= 0:
        raise ConfigurationError(
            f"Invalid pair {spec!r}: expected LOCAL_PATH={GCS_SCHEME}BUCKET[/PREFIX]"
        )

    return build_pair(spec[:index], spec[index + 1:], delete_extraneous, base_dir)


def build_pair(
    local_path: str,
    destination: str,
    delete_extraneous: bool = False,
    base_dir: Optional[Path] = None,
) -> SyncPair:
    if not local_path or not local_path.strip():
        raise ConfigurationError("Local path cannot be empty")

    path = Path(local_path.strip()).expanduser()
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path

    return SyncPair(
        local_path=Path(os.path.normpath(path)),
        destination=RemoteDestination.parse(destination.strip()),
        delete_extraneous=delete_extraneous,
    )


def _pick(cli_value, file_values: FileValues, key: str):
    """CLI value wins, then the settings file; returns None if neither is set."""
    if cli_value is not None:
        return cli_value
    value = file_values.get(key)
    return value if value not in (None, "") else None


def resolve_config(
    overrides: ConfigOverrides,
    config_file: Optional[Path] = None,
    require_credentials: bool = True,
) -> SyncConfig:
    """
    Build and validate the run configuration.

    Precedence is command line, then settings file, then Settings defaults.
    Local path existence is not checked here; a missing directory is a
    pre-flight failure of that one pair.

    Args:
        overrides: Values from the command line
        config_file: Explicit settings file; if None the default path is used when present
        require_credentials: Validate the service-account key file

    Raises:
        ConfigurationError: On any missing or invalid value
    """
    file_values: FileValues = {}
    if config_file is not None:
        if not Path(config_file).is_file():
            raise ConfigurationError(f"Config file {config_file} not found")
    elif Settings.CONFIG_FILE.is_file():
        config_file = Settings.CONFIG_FILE
    else:
        logger.debug(f"No settings file at {Settings.CONFIG_FILE}, using command line only")

    config_dir = None
    if config_file is not None:
        file_values = parse_config_file(config_file)
        config_dir = Path(config_file).resolve().parent

    delete_raw = _pick(overrides.delete, file_values, "DELETE")
    delete = delete_raw if isinstance(delete_raw, bool) else parse_bool(delete_raw or "false", "DELETE")

    pairs: list[SyncPair] = []
    if overrides.pairs or overrides.local_path or overrides.gcs_bucket:
        # Command-line pairs replace settings-file pairs entirely
        pairs.extend(parse_pair_spec(spec, delete) for spec in overrides.pairs)
        pairs.extend(_legacy_pair(overrides.local_path, overrides.gcs_bucket, delete))
    else:
        pairs.extend(
            parse_pair_spec(spec, delete, config_dir) for spec in file_values.get("PAIR", [])
        )
        pairs.extend(_legacy_pair(
            file_values.get("LOCAL_PATH"), file_values.get("GCS_BUCKET"), delete, config_dir
        ))

    if not pairs:
        raise ConfigurationError(
            "At least one pair is required: use --pair LOCAL=gs://BUCKET[/PREFIX] "
            "or --local-path with --gcs-bucket"
        )

    seen = set()
    for pair in pairs:
        if pair in seen:
            raise ConfigurationError(f"Duplicate pair: {pair.name}")
        seen.add(pair)

    interval = _int_setting(overrides.interval, file_values, "INTERVAL", Settings.DEFAULT_INTERVAL, 0)

    compare = (_pick(overrides.compare, file_values, "COMPARE") or Settings.DEFAULT_COMPARE).lower()
    if compare not in Settings.COMPARE_MODES:
        raise ConfigurationError(
            f"compare must be one of {', '.join(Settings.COMPARE_MODES)}, got {compare!r}"
        )

    exclude = list(overrides.exclude)
    if not exclude and file_values.get("EXCLUDE"):
        exclude = [p.strip() for p in str(file_values["EXCLUDE"]).split(",") if p.strip()]

    credentials_path = None
    if require_credentials:
        credentials_path = GCSCredentialResolver.resolve(
            overrides.credentials, file_values.get("CREDENTIALS_PATH"), logger
        )

    log_dir = _pick(overrides.log_dir, file_values, "LOG_DIR")
    health_file = _pick(overrides.health_file, file_values, "HEALTH_FILE")

    return SyncConfig(
        pairs=tuple(pairs),
        credentials_path=credentials_path,
        interval=interval,
        dry_run=_flag(overrides.dry_run, file_values, "DRY_RUN"),
        allow_empty_source=_flag(overrides.allow_empty_source, file_values, "ALLOW_EMPTY_SOURCE"),
        exclude=tuple(exclude),
        pair_workers=_int_setting(
            overrides.pair_workers, file_values, "PAIR_WORKERS", Settings.PAIR_WORKERS, 1
        ),
        transfer_workers=_int_setting(
            overrides.transfer_workers, file_values, "TRANSFER_WORKERS", Settings.TRANSFER_WORKERS, 1
        ),
        max_attempts=_int_setting(
            overrides.max_attempts, file_values, "MAX_ATTEMPTS", Settings.MAX_ATTEMPTS, 1
        ),
        compare=compare,
        log_dir=Path(log_dir) if log_dir else Settings.LOG_DIR,
        health_file=Path(health_file) if health_file else Settings.HEALTH_FILE,
    )


def _int_setting(cli_value: Optional[int], file_values: FileValues, key: str, default: int, minimum: int) -> int:
    value = _pick(cli_value, file_values, key)
    if value is None:
        return default
    return parse_int(value, key.lower().replace("_", " "), minimum)


def _flag(cli_value: Optional[bool], file_values: FileValues, key: str) -> bool:
    if cli_value is not None:
        return cli_value
    raw = file_values.get(key)
    return parse_bool(raw, key) if isinstance(raw, str) else False


def _legacy_pair(
    local_path: Optional[str],
    gcs_bucket: Optional[str],
    delete: bool,
    base_dir: Optional[Path] = None,
) -> list[SyncPair]:
    """The original single-pair ``--local-path`` / ``--gcs-bucket`` form."""
    if not local_path and not gcs_bucket:
        return []
    if not local_path or not gcs_bucket:
        raise ConfigurationError("--local-path and --gcs-bucket are required together")
    return [build_pair(local_path, gcs_bucket, delete, base_dir)]
