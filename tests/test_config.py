from pathlib import Path

import pytest

from mcsci.config import load_settings
from mcsci.extensions.demo import DemoExtension
from mcsci.server.config_loader import build_extensions, load_factory, load_server_config
from mcsci.server.config_schema import ServerConfig


def test_settings_from_env(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MCSCI_HOST", "0.0.0.0")
    monkeypatch.setenv("MCSCI_PORT", "9000")
    monkeypatch.setenv("MCSCI_TRANSCRIPT_DIR", str(tmp_path / "t"))
    monkeypatch.delenv("MCSCI_SERVER_CONFIG", raising=False)
    s = load_settings()
    assert (s.host, s.port) == ("0.0.0.0", 9000)
    assert s.transcript_dir == tmp_path / "t"
    assert s.server_config is None


def test_packaged_default_config(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MCSCI_SERVER_CONFIG", raising=False)
    cfg = load_server_config()
    assert cfg.server_version
    exts = build_extensions(cfg)
    assert exts and isinstance(exts[0], DemoExtension)


def test_explicit_config_path(tmp_path: Path):
    p = tmp_path / "server.yaml"
    p.write_text(
        """
server_version: test-server
banner: [hi]
extensions:
  - {factory: "mcsci.extensions.demo:make_demo", options: {name: one}}
  - {factory: "mcsci.extensions.demo:make_demo", options: {name: two}}
""".lstrip(),
        encoding="utf-8",
    )
    cfg = load_server_config(p)
    assert cfg.banner == ["hi"]
    assert [e.describe().name for e in build_extensions(cfg)] == ["one", "two"]


def test_env_config_path(monkeypatch, tmp_path: Path):
    p = tmp_path / "env.yaml"
    p.write_text("server_version: from-env\n", encoding="utf-8")
    monkeypatch.setenv("MCSCI_SERVER_CONFIG", str(p))
    assert load_server_config().server_version == "from-env"


@pytest.mark.parametrize(
    "text",
    [
        "server_version: [unclosed\n",
        "- a list\n",
        "server_version: '  '\n",
        "extensions: [{factory: no_colon}]\n",
        "banner: ['two\\nlines']\n",
    ],
)
def test_bad_config_is_value_error(tmp_path: Path, text: str):
    p = tmp_path / "bad.yaml"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_server_config(p)


def test_missing_explicit_config(tmp_path: Path):
    with pytest.raises(ValueError):
        load_server_config(tmp_path / "nope.yaml")


def test_bad_factories():
    with pytest.raises(ValueError):
        load_factory("mcsci.no_such_module:make")
    with pytest.raises(ValueError):
        load_factory("mcsci.extensions.demo:missing")
    with pytest.raises(ValueError):
        load_factory("mcsci.extensions.demo:DEMO_TYPES")
    cfg = ServerConfig.model_validate({"extensions": [{"factory": "mcsci.protocol.values:StringValue"}]})
    with pytest.raises(ValueError):
        build_extensions(cfg)
