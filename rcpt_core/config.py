"""Configuration loading, run settings and logging setup.

Locates and loads `config.yaml` (with optional local overrides and a few
environment overrides), exposes a singleton `CFG` dict, builds the typed
`RunSettings` snapshot handed to every phase, and provides
`configure_logging()` for console/file logging with optional JSON lines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import yaml
import logging
from logging.handlers import RotatingFileHandler
import json as _json
import time as _time

from .errors import InvalidConfiguration
from .utils import is_true_flag


def _deep_update(dst: dict, src: dict | None) -> dict:
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def _find_config_path() -> Path:
    """
    Locate config.yaml near the project root. Prefers the repository root
    (parent of this package), falling back to CWD.
    """
    root = Path(__file__).resolve().parent.parent
    cand = root / "config.yaml"
    if cand.exists():
        return cand
    return Path.cwd() / "config.yaml"


def project_root() -> Path:
    return _find_config_path().parent


def load_config(path: Path | None = None) -> dict:
    cfg_path = path or _find_config_path()
    cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) if cfg_path.exists() else {}
    cfg = cfg or {}
    # optional local overrides (credentials, per-worker source files)
    local = (cfg.get("paths", {}) or {}).get("config_local", "config.local.yaml")
    lp = cfg_path.parent / local
    if lp.exists():
        _deep_update(cfg, yaml.safe_load(lp.read_text(encoding="utf-8")))
    if os.getenv("RCPT_SOURCE"):
        cfg.setdefault("input", {})["source"] = os.getenv("RCPT_SOURCE")
    if os.getenv("RCPT_BATCH_SIZE"):
        cfg.setdefault("run", {})["batch_size"] = os.getenv("RCPT_BATCH_SIZE")
    if os.getenv("RCPT_JOB_TOKEN"):
        cfg.setdefault("job", {})["token_env"] = "RCPT_JOB_TOKEN"
    return cfg


# Global singleton config for convenience
CFG: dict = load_config()


def _positive(section: dict, key: str, default, cast=float):
    raw = section.get(key, default)
    try:
        val = cast(raw)
    except (TypeError, ValueError):
        raise InvalidConfiguration(f"{key} must be a number, got {raw!r}") from None
    if val <= 0:
        raise InvalidConfiguration(f"{key} must be positive, got {raw!r}")
    return val


@dataclass(frozen=True)
class RunSettings:
    """Everything a run needs from configuration, resolved once."""

    batch_size: int = 20
    folder_description: str = "UpdatedInfo"
    unit_separator: str = "-"
    skip_unit_code: str = "9100"
    index_sentinel: str = "auto"
    navigation_timeout_s: float = 240.0
    submit_timeout_s: float = 60.0
    job_timeout_s: float = 300.0
    submit_poll_interval_s: float = 1.0
    job_poll_interval_s: float = 3.0
    drain_max_iterations: int = 500
    drain_stall_threshold: int = 3
    verify_description: bool = True
    completed_status: str = "Completed"
    failure_statuses: tuple[str, ...] = ("Failed", "Stopped", "Suspended")
    fields: dict = field(default_factory=dict)

    def field_name(self, logical: str) -> str:
        """Map a logical UI field to the name the driver understands."""
        return str(self.fields.get(logical, logical))

    @classmethod
    def from_cfg(cls, cfg: dict | None = None) -> "RunSettings":
        cfg = CFG if cfg is None else cfg
        run = cfg.get("run", {}) or {}
        timeouts = cfg.get("timeouts", {}) or {}
        polling = cfg.get("polling", {}) or {}
        drain = cfg.get("drain", {}) or {}
        job = cfg.get("job", {}) or {}
        desc = str(run.get("folder_description", cls.folder_description))
        if not desc.strip():
            raise InvalidConfiguration("run.folder_description must not be empty")
        return cls(
            batch_size=_positive(run, "batch_size", cls.batch_size, int),
            folder_description=desc,
            unit_separator=str(run.get("unit_separator", cls.unit_separator)),
            skip_unit_code=str(run.get("skip_unit_code", cls.skip_unit_code)),
            index_sentinel=str(run.get("index_sentinel", cls.index_sentinel)),
            navigation_timeout_s=_positive(timeouts, "navigation_seconds", cls.navigation_timeout_s),
            submit_timeout_s=_positive(timeouts, "submit_seconds", cls.submit_timeout_s),
            job_timeout_s=_positive(timeouts, "job_seconds", cls.job_timeout_s),
            submit_poll_interval_s=_positive(polling, "submit_interval_seconds", cls.submit_poll_interval_s),
            job_poll_interval_s=_positive(polling, "job_interval_seconds", cls.job_poll_interval_s),
            drain_max_iterations=_positive(drain, "max_iterations", cls.drain_max_iterations, int),
            drain_stall_threshold=_positive(drain, "stall_threshold", cls.drain_stall_threshold, int),
            verify_description=is_true_flag(drain.get("verify_description", cls.verify_description)),
            completed_status=str(job.get("completed_status", cls.completed_status)),
            failure_statuses=tuple(str(s) for s in (job.get("failure_statuses") or cls.failure_statuses)),
            fields=dict((cfg.get("ui", {}) or {}).get("fields", {}) or {}),
        )


def configure_logging() -> str | None:
    """
    Configure root logging from CFG['logging'].

    Supports keys:
      - preset: quiet | normal | verbose (defaults, user keys win)
      - level: str (e.g., "INFO", "DEBUG")
      - json: bool (emit JSON lines if true)
      - include_timing: bool (include asctime)
      - include_logger_name: bool
      - datefmt: str (e.g., "%H:%M:%S")
      - utc: bool (use UTC timestamps)
      - console: bool (enable console handler, default true)
      - console_level / file_level: str
      - file: str (path to log file, relative to the repo root)
      - rotate_max_bytes: int (default 5_000_000)
      - rotate_backups: int (default 5)
      - loggers: {name: level} per-logger overrides
      - libs: {name: level} library noise controls
      - force_reconfigure: bool (clear existing handlers)

    Returns the resolved logfile path if a file handler is configured.
    """
    log_cfg = CFG.get("logging") or {}

    _presets = {
        "quiet": {
            "level": "WARNING",
            "loggers": {"rcpt_core": "WARNING"},
            "libs": {"urllib3": "ERROR", "requests": "ERROR"},
        },
        "normal": {
            "level": "INFO",
            "loggers": {},
            "libs": {"urllib3": "WARNING"},
        },
        "verbose": {
            "level": "DEBUG",
            "loggers": {"rcpt_core": "DEBUG"},
            "libs": {"urllib3": "INFO", "requests": "INFO"},
        },
    }
    _preset = _presets.get(str(log_cfg.get("preset", "")).strip().lower(), {})

    level_name = str(log_cfg.get("level", _preset.get("level", "INFO"))).upper()
    level = getattr(logging, level_name, logging.INFO)

    use_json = bool(log_cfg.get("json", False))
    include_timing = bool(log_cfg.get("include_timing", True))
    include_logger_name = bool(log_cfg.get("include_logger_name", False))
    datefmt = str(log_cfg.get("datefmt", "%H:%M:%S"))

    class _JsonFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
            payload = {
                "time": self.formatTime(record, datefmt) if include_timing else None,
                "level": record.levelname,
                "name": record.name if include_logger_name else None,
                "message": record.getMessage(),
            }
            return _json.dumps({k: v for k, v in payload.items() if v is not None}, ensure_ascii=False)

    if use_json:
        formatter: logging.Formatter = _JsonFormatter()
    else:
        parts = []
        if include_timing:
            parts.append("%(asctime)s")
        parts.append("%(levelname)-8s")
        if include_logger_name:
            parts.append("%(name)s")
        parts.append("%(message)s")
        formatter = logging.Formatter(fmt=" ".join(parts), datefmt=datefmt)
    if bool(log_cfg.get("utc", False)):
        formatter.converter = _time.gmtime  # type: ignore[assignment]

    root = logging.getLogger()
    if bool(log_cfg.get("force_reconfigure", False)):
        for h in list(root.handlers):
            root.removeHandler(h)
    root.setLevel(level)

    if bool(log_cfg.get("console", True)):
        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, str(log_cfg.get("console_level", level_name)).upper(), level))
        ch.setFormatter(formatter)
        root.addHandler(ch)

    logfile_used: str | None = None
    file_path = str(log_cfg.get("file", "") or "").strip()
    if file_path:
        log_path = (project_root() / file_path).expanduser().resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                str(log_path),
                maxBytes=int(log_cfg.get("rotate_max_bytes", 5_000_000)),
                backupCount=int(log_cfg.get("rotate_backups", 5)),
                encoding="utf-8",
            )
        except OSError as exc:
            # Fail open: console logging still works
            logging.getLogger(__name__).warning("Cannot open log file %s: %s", log_path, exc)
        else:
            fh.setLevel(getattr(logging, str(log_cfg.get("file_level", level_name)).upper(), level))
            fh.setFormatter(formatter)
            root.addHandler(fh)
            logfile_used = str(log_path)

    if bool(log_cfg.get("capture_warnings", True)):
        logging.captureWarnings(True)

    # Per-logger overrides, preset first, user wins
    overrides = {**(_preset.get("loggers") or {}), **(log_cfg.get("loggers") or {})}
    for name, lvl in overrides.items():
        logging.getLogger(str(name)).setLevel(getattr(logging, str(lvl).upper(), logging.INFO))

    libs = {**(_preset.get("libs") or {}), **(log_cfg.get("libs") or {})}
    for name, lvl in libs.items():
        logging.getLogger(str(name)).setLevel(getattr(logging, str(lvl).upper(), logging.WARNING))

    return logfile_used


__all__ = ["load_config", "CFG", "RunSettings", "configure_logging", "project_root"]
