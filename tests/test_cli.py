import io
import os
import tarfile
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from proxyrules.cli import MMDB_URL_ENV, download_mmdb, init_home, main
from proxyrules.constants import NAME, get_path, set_home_dir


@pytest.fixture(autouse=True)
def restore_home():
    original = get_path().home_dir()
    yield
    set_home_dir(original)


def _archive():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in (
            ("db/README.txt", b"readme"),
            ("db/GeoLite2-Country.mmdb", b"mmdb-bytes"),
        ):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def archive_url(monkeypatch):
    payload = _archive()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    monkeypatch.setenv("no_proxy", "*")
    monkeypatch.setenv("NO_PROXY", "*")
    yield f"http://127.0.0.1:{server.server_address[1]}/db.tar.gz"
    server.shutdown()
    server.server_close()


def test_download_mmdb_extracts_database(tmp_path, monkeypatch, archive_url):
    monkeypatch.setenv(MMDB_URL_ENV, archive_url)
    target = tmp_path / "Country.mmdb"
    download_mmdb(str(target))
    assert target.read_bytes() == b"mmdb-bytes"


def test_download_mmdb_without_location(tmp_path, monkeypatch):
    monkeypatch.delenv(MMDB_URL_ENV, raising=False)
    with pytest.raises(ValueError, match=MMDB_URL_ENV):
        download_mmdb(str(tmp_path / "Country.mmdb"))


def test_init_home_creates_directory_and_files(tmp_path):
    calls = []

    def fake_download(path):
        calls.append(path)
        with open(path, "wb") as handle:
            handle.write(b"db")

    home = init_home(tmp_path / "conf", download=fake_download)
    assert os.path.isdir(home.home_dir())
    assert os.path.getsize(home.config()) == 0
    assert calls == [home.mmdb()]


def test_init_home_keeps_existing_files(tmp_path):
    (tmp_path / "config.yaml").write_text("port: 7890\n")
    (tmp_path / "Country.mmdb").write_bytes(b"db")
    calls = []
    home = init_home(tmp_path, download=calls.append)
    assert calls == []
    with open(home.config()) as handle:
        assert handle.read() == "port: 7890\n"


def test_init_home_download_failure(tmp_path):
    def failing(path):
        raise OSError("offline")

    with pytest.raises(RuntimeError, match="Can't download MMDB: offline"):
        init_home(tmp_path, download=failing)


def test_main_prints_version(capsys):
    assert main(["-v"]) == 0
    assert capsys.readouterr().out.startswith(NAME + " ")


def test_main_reports_empty_config(tmp_path, capsys):
    (tmp_path / "Country.mmdb").write_bytes(b"db")
    assert main(["-d", str(tmp_path)]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Parse config error:")
    assert "is empty" in err


def test_main_resolves_relative_home(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    conf = tmp_path / "conf"
    conf.mkdir()
    (conf / "Country.mmdb").write_bytes(b"db")
    assert main(["-d", "conf"]) == 1
    assert os.path.samefile(get_path().home_dir(), conf)
    assert (conf / "config.yaml").exists()