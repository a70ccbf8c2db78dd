"""
INI configuration loading.

Example ``~/.config/eds-task-sync.conf``::

    [vikunja]
    api_base = https://tasks.example.com
    token = tk_...

    [sync]
    state_db = ~/.local/share/eds-task-sync-state.db
    resolve_conflicts = none

    [scope:Groceries]
    local_list = 1718aa3c0b2e...@host
    project = Groceries

Environment variables VIKUNJA_API_BASE, VIKUNJA_TOKEN and EDS_TASK_SYNC_DB
override the file; command-line options override both.
"""

import os
from collections.abc import Mapping
from configparser import ConfigParser
from pathlib import Path

from eds_task_sync.models import DEFAULT_STATE_DB
from eds_task_sync.models import ConfigError
from eds_task_sync.models import ConflictPolicy
from eds_task_sync.models import ScopeConfig
from eds_task_sync.models import SyncConfig

SCOPE_PREFIX = "scope:"


def load_config_file(config_path: Path) -> ConfigParser:
    parser = ConfigParser()
    if config_path.exists():
        parser.read(config_path)
    return parser


def parse_policy(value: str | None) -> ConflictPolicy:
    if not value:
        return ConflictPolicy.NONE
    try:
        return ConflictPolicy(value.strip().lower())
    except ValueError:
        choices = ", ".join(p.value for p in ConflictPolicy)
        raise ConfigError(
            f"Unknown conflict policy {value!r} (expected one of: {choices})"
        ) from None


def read_scopes(parser: ConfigParser) -> list[ScopeConfig]:
    scopes = []
    for section in parser.sections():
        if not section.startswith(SCOPE_PREFIX):
            continue
        name = section[len(SCOPE_PREFIX):].strip()
        local_list = parser.get(section, "local_list", fallback="").strip()
        project = parser.get(section, "project", fallback="").strip() or name
        if not local_list:
            raise ConfigError(f"[{section}] is missing local_list")
        scopes.append(ScopeConfig(name=name, local_list=local_list, project=project))
    return scopes


def resolve_state_db(
    parser: ConfigParser,
    cli_value: Path | None = None,
    environ: Mapping[str, str] = os.environ,
) -> Path:
    if cli_value is not None:
        return cli_value
    raw = environ.get("EDS_TASK_SYNC_DB") or parser.get("sync", "state_db", fallback="")
    if raw:
        return Path(raw).expanduser()
    return DEFAULT_STATE_DB


def build_sync_config(
    config_path: Path,
    state_db: Path | None = None,
    environ: Mapping[str, str] = os.environ,
    **options,
) -> SyncConfig:
    """Merge file, environment and explicit ``options`` into a SyncConfig.

    ``options`` are SyncConfig fields; ``None`` values fall through to the
    file/environment.
    """
    parser = load_config_file(config_path)
    options = {k: v for k, v in options.items() if v is not None}

    api_base = (
        options.pop("api_base", None)
        or environ.get("VIKUNJA_API_BASE")
        or parser.get("vikunja", "api_base", fallback="")
    ).strip()
    token = (
        options.pop("token", None)
        or environ.get("VIKUNJA_TOKEN")
        or parser.get("vikunja", "token", fallback="")
    ).strip()

    if not api_base:
        raise ConfigError(f"No Vikunja api_base configured (set it in {config_path})")
    if not token:
        raise ConfigError(
            f"No Vikunja token configured (set VIKUNJA_TOKEN or [vikunja] token in {config_path})"
        )

    scopes = options.pop("scopes", None) or read_scopes(parser)
    if not scopes:
        raise ConfigError(f"No [scope:NAME] sections found in {config_path}")

    if "resolve_conflicts" not in options:
        options["resolve_conflicts"] = parse_policy(
            parser.get("sync", "resolve_conflicts", fallback=None)
        )
    if "timeout" not in options and parser.has_option("sync", "timeout"):
        options["timeout"] = parser.getfloat("sync", "timeout")

    return SyncConfig(
        api_base=api_base,
        token=token,
        state_db_path=resolve_state_db(parser, state_db, environ),
        scopes=scopes,
        **options,
    )
