import pytest


@pytest.fixture(autouse=True)
def devsrv_home(monkeypatch, tmp_path):
    """Point every per-user and system path at a temporary directory."""
    home = tmp_path / "devsrv-home"
    home.mkdir()
    hosts = tmp_path / "hosts"
    hosts.write_text("127.0.0.1 localhost\n::1 localhost\n", encoding="utf-8")

    monkeypatch.setenv("DEVSRV_HOME", str(home))
    monkeypatch.setenv("DEVSRV_HOSTS_FILE", str(hosts))
    monkeypatch.delenv("DEVSRV_CADDY", raising=False)
    for var in ("DEVSRV_LOG_FORMAT", "DEVSRV_LOG_LEVEL", "DEVSRV_LOG_FILE"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def site_folder(tmp_path):
    folder = tmp_path / "site"
    folder.mkdir()
    (folder / "index.html").write_text("<h1>hello</h1>\n", encoding="utf-8")
    return folder
