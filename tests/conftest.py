from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure `import oni_agent...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from oni_agent.runtime.venv import ONIEnvironment  # noqa: E402


FAKE_MANAGE_PY = """#!/bin/sh
case "$1" in
  succeed)
    echo "Yes!"
    exit 0
    ;;
  fail)
    echo "starting"
    echo "something broke" >&2
    exit 1
    ;;
  env)
    echo "VIRTUAL_ENV=$VIRTUAL_ENV"
    echo "PATH=$PATH"
    exit 0
    ;;
  check)
    echo "System check identified no issues (0 silenced)."
    exit 0
    ;;
  slow)
    exec sleep 30
    ;;
  load_titles)
    xml=$(cat "$2/marc.xml")
    if [ "$xml" = "<root>fail</root>" ]; then
      echo "You asked for failure"
      exit 1
    fi
    echo "Loading titles from XML: $xml"
    exit 0
    ;;
  *)
    echo "No!"
    exit 1
    ;;
esac
"""


BATCH_ISSUES = [
    {
        "lccn": "sn84022658",
        "issue_date": "1856-01-05",
        "edition": "01",
        "dir": "sn84022658/print/1856010501",
        "files": ["0001.jp2", "0001.xml", "0001.pdf", "0001_1.xml", "0001.tif"],
    },
    {
        "lccn": "sn84022658",
        "issue_date": "1856-01-12",
        "edition": "01",
        "dir": "sn84022658/print/1856011201",
        "files": ["0001.jp2", "0001.xml", "0001.pdf", "0001.TIFF", "0002.jp2", "0002.xml"],
    },
    {
        "lccn": "sn12345678",
        "issue_date": "1900-01-01",
        "edition": "01",
        "dir": "sn12345678/print/1900010101",
        "files": ["0001.jp2", "0001.xml"],
    },
]


def batch_xml(name: str = "batch_oru_testbatch_ver01", issues: list[dict] | None = None) -> str:
    rows = []
    for i in issues if issues is not None else BATCH_ISSUES:
        issue_file = f"{i['dir']}/{i['dir'].rsplit('/', 1)[-1]}.xml"
        rows.append(
            f'\t<issue lccn="{i["lccn"]}" issueDate="{i["issue_date"]}" editionOrder="{i["edition"]}">{issue_file}</issue>'
        )
    rows.append('\t<reel reelNumber="00279557931">00279557931/00279557931.xml</reel>')
    body = "\n".join(rows)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<ndnp:batch xmlns:ndnp="http://www.loc.gov/ndnp" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        f'xmlns="http://www.loc.gov/ndnp" name="{name}" awardee="oru" awardYear="2023">\n'
        f"{body}\n"
        "</ndnp:batch>\n"
    )


def make_batch(root: Path) -> Path:
    """Build a small three-issue batch under root and return root."""
    data = root / "data"
    for i in BATCH_ISSUES:
        issue_dir = data / i["dir"]
        issue_dir.mkdir(parents=True, exist_ok=True)
        (issue_dir / f"{i['dir'].rsplit('/', 1)[-1]}.xml").write_text("<mets/>", encoding="utf-8")
        for fname in i["files"]:
            (issue_dir / fname).write_text(f"Hello, my name is: {fname}", encoding="utf-8")

    reel_dir = data / "00279557931"
    reel_dir.mkdir(parents=True, exist_ok=True)
    (reel_dir / "00279557931.xml").write_text("<reel/>", encoding="utf-8")
    (reel_dir / "00279557931_1.xml").write_text("<reel/>", encoding="utf-8")

    (data / "batch.xml").write_text(batch_xml(), encoding="utf-8")
    (data / "batch_1.xml").write_text(batch_xml(), encoding="utf-8")
    return root


def relative_files(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


@pytest.fixture
def oni_dir(tmp_path: Path) -> Path:
    d = tmp_path / "openoni"
    d.mkdir()
    manage = d / "manage.py"
    manage.write_text(FAKE_MANAGE_PY, encoding="utf-8")
    manage.chmod(0o755)
    return d


@pytest.fixture
def oni_env(oni_dir: Path) -> ONIEnvironment:
    return ONIEnvironment.activate(oni_dir)


@pytest.fixture
def batch_dir(tmp_path: Path) -> Path:
    return make_batch(tmp_path / "batches" / "batch_oru_testbatch_ver01")
