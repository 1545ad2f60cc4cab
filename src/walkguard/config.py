from pathlib import Path
from typing import NoReturn, TypedDict, cast

import yaml

from .errors import ConfigError
from .models import Policy, RawPolicy, RawReportConfig, ReportConfig


class RawPolicyFile(TypedDict):
    policy: RawPolicy


class RawReportConfigFile(TypedDict):
    report: RawReportConfig


_POLICY_KEYS: dict[str, type | tuple[type, ...]] = {
    "version": int,
    "include": list,
    "exclude_pfx": list,
    "hash_pfx": list,
    "max_hash_file_size": int,
    "walk_cross_device": bool,
    "ignore_irregular_files": bool,
    "max_directory_depth": int,
}

_REPORT_KEYS: dict[str, type | tuple[type, ...]] = {
    "version": int,
    "exclude_pfx": list,
    "ignore_atime": bool,
}


def type_error(path: Path, key: str, value: object) -> NoReturn:
    raise ConfigError(f"{path}: unexpected value of wrong type for {key!r}: {value!r}")


def _load_section(path: Path, section: str) -> dict[str, object]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")

    try:
        with path.open("r", encoding="UTF-8") as f:
            raw_loaded_obj: object | None = cast(object, yaml.safe_load(f))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Unable to read {path}: {e}") from e

    if not raw_loaded_obj:
        raise ConfigError(f"Config file {path} is empty or invalid YAML.")

    if not isinstance(raw_loaded_obj, dict):
        type_error(path, "<document>", raw_loaded_obj)

    raw_dict: dict[str, object] = cast(dict[str, object], raw_loaded_obj)

    section_raw: object | None = raw_dict.get(section)
    if not isinstance(section_raw, dict):
        type_error(path, section, section_raw)

    return cast(dict[str, object], section_raw)


def _check_keys(path: Path, raw: dict[str, object], schema: dict[str, type | tuple[type, ...]]) -> None:
    for key, value in raw.items():
        if key not in schema:
            raise ConfigError(f"{path}: unknown key {key!r}")

        expected: type | tuple[type, ...] = schema[key]
        # bool is a subclass of int; do not let `true` pass as a size.
        if expected is int and isinstance(value, bool):
            type_error(path, key, value)
        if not isinstance(value, expected):
            type_error(path, key, value)

        if expected is list and not all(isinstance(item, str) for item in cast(list[object], value)):
            type_error(path, key, value)


def load_policy(path: Path) -> Policy:
    raw: dict[str, object] = _load_section(path, "policy")
    _check_keys(path, raw, _POLICY_KEYS)

    if not raw.get("include"):
        raise ConfigError(f"{path}: policy must include at least one path.")

    for key in ("max_hash_file_size", "max_directory_depth"):
        if cast(int, raw.get(key, 0)) < 0:
            raise ConfigError(f"{path}: {key} must not be negative.")

    return Policy.from_raw(cast(RawPolicy, cast(object, raw)))


def load_report_config(path: Path) -> ReportConfig:
    raw: dict[str, object] = _load_section(path, "report")
    _check_keys(path, raw, _REPORT_KEYS)

    return ReportConfig.from_raw(cast(RawReportConfig, cast(object, raw)))


def save_policy(policy: Policy, path: Path) -> None:
    raw: RawPolicyFile = {"policy": policy.to_raw()}
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(raw, f, sort_keys=False)


def save_report_config(report_config: ReportConfig, path: Path) -> None:
    raw: RawReportConfigFile = {"report": report_config.to_raw()}
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(raw, f, sort_keys=False)
