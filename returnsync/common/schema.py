"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from returnsync.common.errors import ConfigError

SECTION_KEYS = {
    "api": {"list_url", "detail_url_template", "language"},
    "crawler": {"page_size", "page_delay_seconds", "max_pages", "max_attempts", "connect_timeout", "read_timeout"},
    "enricher": {"max_concurrency", "timeout_seconds", "address_fields"},
    "auth": {"capture_timeout_seconds", "allow_default_headers", "default_headers"},
    "dates": {"timezone", "default_days"},
}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value: object, ctx: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{ctx} must be {'>= 0' if allow_zero else '> 0'}, got {value!r}")


def _assert_mapping(value: object, ctx: str) -> None:
    if not isinstance(value, dict):
        raise ConfigError(f"{ctx} must be a mapping")


def validate_app_config(cfg: object, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "config")
    top_known = {*SECTION_KEYS, "warehouses"}
    _assert_required_keys(cfg, top_known, "config")
    _assert_no_unknown_keys(cfg, top_known, "config", allow_unknown)

    for section, keys in SECTION_KEYS.items():
        _assert_mapping(cfg[section], section)
        _assert_required_keys(cfg[section], keys, section)
        _assert_no_unknown_keys(cfg[section], keys, section, allow_unknown)

    if "{return_id}" not in str(cfg["api"]["detail_url_template"]):
        raise ConfigError("api.detail_url_template must contain a {return_id} placeholder")

    crawler = cfg["crawler"]
    for name in ("page_size", "max_pages", "max_attempts"):
        if not isinstance(crawler[name], int) or isinstance(crawler[name], bool):
            raise ConfigError(f"crawler.{name} must be an integer")
        _assert_positive(crawler[name], f"crawler.{name}")
    _assert_positive(crawler["page_delay_seconds"], "crawler.page_delay_seconds", allow_zero=True)
    _assert_positive(crawler["connect_timeout"], "crawler.connect_timeout")
    _assert_positive(crawler["read_timeout"], "crawler.read_timeout")

    enricher = cfg["enricher"]
    if not isinstance(enricher["max_concurrency"], int) or isinstance(enricher["max_concurrency"], bool):
        raise ConfigError("enricher.max_concurrency must be an integer")
    _assert_positive(enricher["max_concurrency"], "enricher.max_concurrency")
    _assert_positive(enricher["timeout_seconds"], "enricher.timeout_seconds")
    if not isinstance(enricher["address_fields"], list) or not enricher["address_fields"]:
        raise ConfigError("enricher.address_fields must be a non-empty list")

    _assert_positive(cfg["auth"]["capture_timeout_seconds"], "auth.capture_timeout_seconds", allow_zero=True)
    _assert_mapping(cfg["auth"]["default_headers"], "auth.default_headers")
    _assert_positive(cfg["dates"]["default_days"], "dates.default_days")

    warehouses = cfg["warehouses"]
    _assert_mapping(warehouses, "warehouses")
    if not warehouses:
        raise ConfigError("warehouses must be a non-empty mapping")
    # YAML reads unquoted postal codes as integers.
    cfg["warehouses"] = {str(code): str(label) for code, label in warehouses.items()}

    return cfg
