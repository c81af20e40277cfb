from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from textwrap import dedent
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union
import yaml

from .errors import ConfigError

_CONFIG_DIR_ENV = "DYNMOTD_CONFIG_DIR"
_ENV_PREFIX = "DYNMOTD__"
SYSTEM_CONFIG_DIR = Path("/etc/dynmotd")

DEFAULT_EXCLUDED_FS_TYPES: Tuple[str, ...] = (
    "autofs",
    "binfmt_misc",
    "bpf",
    "cgroup",
    "cgroup2",
    "configfs",
    "debugfs",
    "devpts",
    "devtmpfs",
    "efivarfs",
    "fuse.gvfsd-fuse",
    "fuse.portal",
    "fusectl",
    "hugetlbfs",
    "mqueue",
    "nsfs",
    "proc",
    "pstore",
    "ramfs",
    "rpc_pipefs",
    "securityfs",
    "selinuxfs",
    "squashfs",
    "sysfs",
    "tmpfs",
    "tracefs",
)

_DEFAULTS_YAML = dedent(
    """
    # URL returning a single line of welcome text; leave empty to skip the fetch.
    welcome_url: ""
    # Seconds to wait for the welcome URL before falling back to welcome_text.
    fetch_timeout: 2.0
    welcome_text: "Welcome!"
    farewell: "Have a nice day!"
    ascii_art: ""
    # auto | true | false
    color: auto
    disk_include_fs_types: []
    """
)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class MotdSettings:
    """Resolved configuration for one banner run.

    Attributes:
        welcome_url: Remote source of the welcome line, or None
        fetch_timeout: Seconds allowed for the welcome fetch
        welcome_text: Welcome line used when no URL is set or the fetch fails
        farewell: Closing line
        ascii_art: Optional art printed above the welcome line
        color: True/False, or None to follow whether stdout is a terminal
        disk_exclude_fs_types: Filesystem types never reported as disks
        disk_include_fs_types: When non-empty, only these types are reported
    """
    welcome_url: str | None = None
    fetch_timeout: float = 2.0
    welcome_text: str = "Welcome!"
    farewell: str = "Have a nice day!"
    ascii_art: str | None = None
    color: bool | None = None
    disk_exclude_fs_types: Tuple[str, ...] = DEFAULT_EXCLUDED_FS_TYPES
    disk_include_fs_types: Tuple[str, ...] = ()

    def reports_filesystem(self, fs_type: str) -> bool:
        if self.disk_include_fs_types:
            return fs_type in self.disk_include_fs_types
        return fs_type not in self.disk_exclude_fs_types


def _candidate_config_dirs() -> List[Path]:
    """Ordered list of directories to scan for configuration files."""

    directories: List[Path] = [SYSTEM_CONFIG_DIR]

    xdg_home = os.environ.get("XDG_CONFIG_HOME", "").strip()
    user_dir = (Path(xdg_home) if xdg_home else Path.home() / ".config") / "dynmotd"
    if user_dir not in directories:
        directories.append(user_dir)

    env_value = os.environ.get(_CONFIG_DIR_ENV, "")
    for fragment in (part.strip() for part in env_value.split(os.pathsep) if part.strip()):
        candidate = Path(fragment).expanduser()
        if candidate not in directories:
            directories.append(candidate)

    return directories


def default_config() -> Dict[str, Any]:
    """Return the built-in defaults as a plain mapping."""
    data = yaml.safe_load(_DEFAULTS_YAML) or {}
    data["disk_exclude_fs_types"] = list(DEFAULT_EXCLUDED_FS_TYPES)
    return data


def load_project_config(explicit_files: Sequence[PathLike] | None = None) -> Dict[str, Any]:
    """Load and merge every YAML configuration file that applies.

    Directories are scanned in order (system, user, ``DYNMOTD_CONFIG_DIR``)
    and their ``*.yml`` / ``*.yaml`` files merged in lexicographic order on
    top of the built-in defaults. Explicit files are merged last.

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigError: If a file is not valid YAML or is not a mapping
    """
    files: List[Path] = []
    seen: set[Path] = set()

    for directory in _candidate_config_dirs():
        if directory.exists() and directory.is_dir():
            for pattern in ("*.yml", "*.yaml"):
                for path in sorted(directory.glob(pattern)):
                    if path not in seen:
                        files.append(path)
                        seen.add(path)

    if explicit_files:
        for entry in explicit_files:
            candidate = Path(entry).expanduser()
            if candidate not in seen:
                files.append(candidate)
                seen.add(candidate)

    data = default_config()
    for path in files:
        try:
            content = yaml.safe_load(path.read_text())
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise ConfigError(f"{path}: cannot read ({exc.strerror or exc})") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path}: invalid YAML ({exc})") from exc
        if content is None:
            continue
        if not isinstance(content, dict):
            raise ConfigError(f"{path}: expected a mapping at the top level")
        deep_merge(data, content)
    return data


def deep_merge(a: dict, b: dict) -> dict:
    """Recursively merge dictionary b into dictionary a.

    Args:
        a: Target dictionary (modified in place)
        b: Source dictionary to merge from

    Returns:
        The modified dictionary a
    """
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(a.get(k), dict):
            deep_merge(a[k], v)
        else:
            a[k] = v
    return a


def env_to_overrides(env: Mapping[str, str]) -> dict:
    """Convert ``DYNMOTD__`` prefixed environment variables to overrides.

    ``DYNMOTD__welcome_url=https://...`` becomes ``{"welcome_url": "https://..."}``;
    further ``__`` separators create nested keys.
    """
    out: dict = {}
    for key, value in env.items():
        if key.startswith(_ENV_PREFIX):
            path = key[len(_ENV_PREFIX):].lower().split("__")
            current = out
            for segment in path[:-1]:
                current = current.setdefault(segment, {})
            current[path[-1]] = value
    return out


def deep_set(d: dict, dotted: str, value: str) -> None:
    current = d
    parts = dotted.split('.')
    for key in parts[:-1]:
        current = current.setdefault(key, {})
    current[parts[-1]] = value


def merge_overrides(cfg: dict, *, set_kv: Sequence[str], env: Mapping[str, str]) -> dict:
    """Apply ``--set key=value`` pairs, then ``DYNMOTD__`` environment overrides.

    Raises:
        ConfigError: If a ``--set`` item is not of the form key=value
    """
    merged = dict(cfg)
    for item in set_kv:
        if "=" not in item:
            raise ConfigError("--set expects key=value")
        key, value = item.split('=', 1)
        deep_set(merged, key.strip(), value)
    return deep_merge(merged, env_to_overrides(env))


def _resolve_token(token: str) -> str:
    """Resolve ``${env:VAR}`` and ``${file:/path}`` placeholders."""
    if token.startswith('${env:') and token.endswith('}'):
        return os.environ.get(token[6:-1], '')
    if token.startswith('${file:') and token.endswith('}'):
        try:
            return Path(token[7:-1]).read_text().strip()
        except OSError as exc:
            raise ConfigError(f"cannot read {token[7:-1]}: {exc.strerror or exc}") from exc
    return token


def resolve_placeholders(obj: Any) -> Any:
    """Recursively resolve placeholder strings in a configuration tree."""
    if isinstance(obj, dict):
        return {k: resolve_placeholders(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [resolve_placeholders(x) for x in obj]
    if isinstance(obj, str) and obj.startswith('${'):
        return _resolve_token(obj)
    return obj


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce_color(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("", "auto"):
        return None
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"color: expected auto, true or false, got {value!r}")


def _coerce_types(key: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = [str(part).strip() for part in value]
    else:
        raise ConfigError(f"{key}: expected a list of filesystem types")
    return tuple(item for item in items if item)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def settings_from_mapping(data: Mapping[str, Any]) -> MotdSettings:
    """Build :class:`MotdSettings` from a merged configuration mapping.

    Raises:
        ConfigError: If a value has the wrong type or is out of range
    """
    try:
        timeout = float(data.get("fetch_timeout", 2.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"fetch_timeout: expected a number, got {data.get('fetch_timeout')!r}") from exc
    if timeout <= 0:
        raise ConfigError("fetch_timeout: must be greater than zero")

    welcome_url = _optional_text(data.get("welcome_url"))
    return MotdSettings(
        welcome_url=welcome_url.strip() if welcome_url else None,
        fetch_timeout=timeout,
        welcome_text=_optional_text(data.get("welcome_text")) or MotdSettings.welcome_text,
        farewell=_optional_text(data.get("farewell")) or MotdSettings.farewell,
        ascii_art=_optional_text(data.get("ascii_art")),
        color=_coerce_color(data.get("color")),
        disk_exclude_fs_types=_coerce_types(
            "disk_exclude_fs_types", data.get("disk_exclude_fs_types", DEFAULT_EXCLUDED_FS_TYPES)
        ),
        disk_include_fs_types=_coerce_types("disk_include_fs_types", data.get("disk_include_fs_types")),
    )


def load_settings(
    explicit_files: Sequence[PathLike] | None = None,
    *,
    set_kv: Sequence[str] = (),
    env: Mapping[str, str] | None = None,
) -> MotdSettings:
    """Load, override, resolve and validate configuration in one step."""
    data = load_project_config(explicit_files=explicit_files)
    data = merge_overrides(data, set_kv=set_kv, env=os.environ if env is None else env)
    return settings_from_mapping(resolve_placeholders(data))
