"""Command-line entry point: prepare the home directory, load the config, run."""

from __future__ import annotations

import argparse
import contextlib
import os
import platform
import shutil
import signal
import sys
import tarfile
import threading
import urllib.request
from typing import Callable, Optional

from .config import Config, ConfigError, parse
from .constants import BUILD_TIME, NAME, VERSION, HomePath, get_path, set_home_dir
from .events import default_log, set_level
from .tunnel import Tunnel

MMDB_URL_ENV = "PROXYRULES_MMDB_URL"
_MMDB_MEMBER = "GeoLite2-Country.mmdb"


def download_mmdb(path) -> None:
    """Fetch the country database archive and write its .mmdb file to ``path``.

    The archive location is read from the PROXYRULES_MMDB_URL environment
    variable.
    """
    url = os.environ.get(MMDB_URL_ENV)
    if not url:
        raise ValueError(f"no MMDB download location configured; set {MMDB_URL_ENV}")
    with urllib.request.urlopen(url) as response, tarfile.open(
        fileobj=response, mode="r|gz"
    ) as archive:
        for member in archive:
            if not member.name.endswith(_MMDB_MEMBER):
                continue
            source = archive.extractfile(member)
            if source is None:
                continue
            with open(path, "wb") as target:
                shutil.copyfileobj(source, target)


def init_home(directory, download: Callable[[str], None] = download_mmdb) -> HomePath:
    """Create the home directory, an empty config file and the country database."""
    home = HomePath(os.fspath(directory))
    log = default_log()

    if not os.path.exists(home.home_dir()):
        try:
            os.makedirs(home.home_dir(), exist_ok=True)
        except OSError as exc:
            raise RuntimeError(
                f"Can't create config directory {home.home_dir()}: {exc}"
            ) from exc

    if not os.path.exists(home.config()):
        log.info("Can't find config, create an empty file")
        with contextlib.suppress(OSError):
            open(home.config(), "a").close()

    if not os.path.exists(home.mmdb()):
        log.info("Can't find MMDB, start download")
        try:
            download(home.mmdb())
        except (OSError, ValueError, tarfile.TarError) as exc:
            raise RuntimeError(f"Can't download MMDB: {exc}") from exc
    return home


def _apply(cfg: Config) -> Tunnel:
    set_level(cfg.general.log_level)
    tunnel = Tunnel(
        mode=cfg.general.mode,
        hosts=cfg.hosts,
        ignore_resolve_fail=cfg.experimental.ignore_resolve_fail,
    )
    tunnel.update_proxies(cfg.proxies)
    tunnel.update_rules(cfg.rules)
    if cfg.users:
        default_log().info("Authentication of local server updated")
    return tunnel


def _wait_for_signal() -> None:
    stop = threading.Event()
    signals = (signal.SIGINT, signal.SIGTERM)
    previous = {sig: signal.signal(sig, lambda *_: stop.set()) for sig in signals}
    try:
        while not stop.wait(0.5):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog=NAME)
    parser.add_argument("-d", dest="home_dir", default="", help="set configuration directory")
    parser.add_argument("-v", dest="version", action="store_true", help="show current version")
    args = parser.parse_args(argv)

    if args.version:
        print(f"{NAME} {VERSION} {sys.platform} {platform.machine()} {BUILD_TIME}")
        return 0

    if args.home_dir:
        home_dir = args.home_dir
        if not os.path.isabs(home_dir):
            home_dir = os.path.join(os.getcwd(), home_dir)
        set_home_dir(home_dir)

    try:
        init_home(get_path().home_dir())
    except RuntimeError as exc:
        print(f"Initial configuration directory error: {exc}", file=sys.stderr)
        return 1

    try:
        cfg = parse(get_path().config(), get_path().home_dir())
    except (ConfigError, OSError) as exc:
        print(f"Parse config error: {exc}", file=sys.stderr)
        return 1

    tunnel = _apply(cfg)
    with tunnel.traffic:
        _wait_for_signal()
    return 0


if __name__ == "__main__":
    sys.exit(main())