from __future__ import annotations

from pathlib import Path

import pytest

from dynmotd.core import config as cfg
from dynmotd.core.errors import ConfigError


@pytest.fixture
def config_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Point the user and environment config directories at temp paths."""
    xdg = tmp_path / "xdg"
    user_dir = xdg / "dynmotd"
    user_dir.mkdir(parents=True)
    shared = tmp_path / "shared"
    shared.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("DYNMOTD_CONFIG_DIR", str(shared))
    monkeypatch.setattr(cfg, "SYSTEM_CONFIG_DIR", tmp_path / "etc-dynmotd")
    return user_dir, shared


def test_system_dir_is_scanned_first(config_dirs, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    system = tmp_path / "etc-dynmotd"
    system.mkdir()
    (system / "00-site.yaml").write_text("welcome_text: from-system\nfarewell: system-bye\n")
    user_dir, _ = config_dirs
    (user_dir / "me.yaml").write_text("farewell: user-bye\n")

    settings = cfg.load_settings(env={})

    assert settings.welcome_text == "from-system"
    assert settings.farewell == "user-bye"


def test_defaults(config_dirs) -> None:
    settings = cfg.load_settings(env={})

    assert settings == cfg.MotdSettings()
    assert settings.welcome_url is None
    assert settings.fetch_timeout == 2.0
    assert settings.welcome_text == "Welcome!"
    assert settings.farewell == "Have a nice day!"
    assert settings.color is None
    assert settings.reports_filesystem("ext4")
    assert settings.reports_filesystem("overlay")
    assert not settings.reports_filesystem("tmpfs")
    assert not settings.reports_filesystem("proc")


def test_env_dir_overrides_user_dir(config_dirs) -> None:
    user_dir, shared = config_dirs
    (user_dir / "base.yaml").write_text("welcome_text: from-user\nfarewell: user-bye\n")
    (shared / "site.yml").write_text("welcome_text: from-shared\n")

    settings = cfg.load_settings(env={})

    assert settings.welcome_text == "from-shared"
    assert settings.farewell == "user-bye"


def test_explicit_file_merges_last(config_dirs, tmp_path: Path) -> None:
    _, shared = config_dirs
    (shared / "site.yaml").write_text("welcome_url: http://shared.example/\n")
    explicit = tmp_path / "mine.yaml"
    explicit.write_text("welcome_url: http://mine.example/\nfetch_timeout: 0.5\n")

    settings = cfg.load_settings([explicit], env={})

    assert settings.welcome_url == "http://mine.example/"
    assert settings.fetch_timeout == 0.5


def test_missing_explicit_file_is_ignored(config_dirs, tmp_path: Path) -> None:
    assert cfg.load_settings([tmp_path / "absent.yaml"], env={}) == cfg.MotdSettings()


def test_set_then_environment_overrides(config_dirs) -> None:
    settings = cfg.load_settings(
        set_kv=["welcome_text=From set", "farewell=See you"],
        env={"DYNMOTD__WELCOME_TEXT": "From env", "UNRELATED": "x"},
    )

    assert settings.welcome_text == "From env"
    assert settings.farewell == "See you"


def test_malformed_set_is_rejected(config_dirs) -> None:
    with pytest.raises(ConfigError, match="key=value"):
        cfg.load_settings(set_kv=["welcome_text"], env={})


def test_placeholders(config_dirs, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    secret = tmp_path / "url.txt"
    secret.write_text("https://motd.example/welcome\n")
    monkeypatch.setenv("MOTD_FAREWELL", "Bye from env")

    settings = cfg.load_settings(
        set_kv=[f"welcome_url=${{file:{secret}}}", "farewell=${env:MOTD_FAREWELL}"],
        env={},
    )

    assert settings.welcome_url == "https://motd.example/welcome"
    assert settings.farewell == "Bye from env"


def test_unreadable_file_placeholder(config_dirs, tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="cannot read"):
        cfg.load_settings(set_kv=[f"welcome_url=${{file:{tmp_path / 'nope'}}}"], env={})


@pytest.mark.parametrize(
    ("value", "expected"),
    [("auto", None), ("true", True), ("off", False), ("YES", True)],
)
def test_color_values(config_dirs, value: str, expected) -> None:
    assert cfg.load_settings(set_kv=[f"color={value}"], env={}).color is expected


def test_yaml_boolean_color(config_dirs) -> None:
    _, shared = config_dirs
    (shared / "color.yaml").write_text("color: false\n")

    assert cfg.load_settings(env={}).color is False


@pytest.mark.parametrize(
    "item",
    ["color=sometimes", "fetch_timeout=soon", "fetch_timeout=0", "fetch_timeout=-1"],
)
def test_invalid_values(config_dirs, item: str) -> None:
    with pytest.raises(ConfigError):
        cfg.load_settings(set_kv=[item], env={})


def test_invalid_yaml(config_dirs) -> None:
    _, shared = config_dirs
    (shared / "broken.yaml").write_text("welcome_text: [unclosed\n")

    with pytest.raises(ConfigError, match="invalid YAML"):
        cfg.load_settings(env={})


def test_non_mapping_file(config_dirs) -> None:
    _, shared = config_dirs
    (shared / "list.yaml").write_text("- a\n- b\n")

    with pytest.raises(ConfigError, match="mapping"):
        cfg.load_settings(env={})


def test_unreadable_file(config_dirs, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    system = tmp_path / "etc-dynmotd"
    system.mkdir()
    secret = system / "secret.yaml"
    secret.write_text("welcome_text: hidden\n")
    original = Path.read_text

    def read_text(self, *args, **kwargs):
        if self == secret:
            raise PermissionError(13, "Permission denied", str(self))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "read_text", read_text)

    with pytest.raises(ConfigError, match="cannot read"):
        cfg.load_settings(env={})


def test_directory_named_like_config_file(config_dirs) -> None:
    _, shared = config_dirs
    (shared / "conf.d.yaml").mkdir()

    with pytest.raises(ConfigError, match="cannot read"):
        cfg.load_settings(env={})


def test_filesystem_lists(config_dirs) -> None:
    settings = cfg.load_settings(
        set_kv=["disk_include_fs_types=ext4, xfs", "disk_exclude_fs_types=ext4"],
        env={},
    )

    assert settings.disk_include_fs_types == ("ext4", "xfs")
    assert settings.reports_filesystem("xfs")
    assert settings.reports_filesystem("ext4")
    assert not settings.reports_filesystem("btrfs")


def test_env_to_overrides_nests_keys() -> None:
    overrides = cfg.env_to_overrides({"DYNMOTD__A__B": "1", "DYNMOTD__TOP": "2", "OTHER": "3"})

    assert overrides == {"a": {"b": "1"}, "top": "2"}


def test_deep_merge_keeps_siblings() -> None:
    merged = cfg.deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 10}})

    assert merged == {"a": {"b": 10, "c": 2}, "d": 3}
