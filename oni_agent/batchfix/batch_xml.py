from __future__ import annotations

import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr


NDNP_NS = "http://www.loc.gov/ndnp"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'


class ManifestError(RuntimeError):
    pass


def keyfix(key: str) -> str:
    """Normalize an issue key so "sn12345678/1900-01-01_01" and "sn12345678/1900010101" match."""
    return (key or "").replace("-", "").replace("_", "")


def _clean_rel_path(raw: str) -> str:
    p = posixpath.normpath((raw or "").strip().replace("\\", "/"))
    return "" if p == "." else p


@dataclass
class IssueEntry:
    lccn: str
    issue_date: str
    edition: str
    path: str
    skip: bool = False

    @property
    def key(self) -> str:
        # Edition is left out on purpose; this is a display key, not an NCA issue key.
        return f"{self.lccn}/{self.issue_date}"

    @property
    def normalized_key(self) -> str:
        return keyfix(f"{self.lccn}/{self.issue_date}{self.edition}")

    @property
    def directory(self) -> str:
        """Directory portion of the issue's manifest-relative path."""
        return posixpath.dirname(_clean_rel_path(self.path))


@dataclass
class ReelEntry:
    reel_number: str
    path: str


@dataclass
class BatchManifest:
    name: str
    awardee: str
    award_year: str
    issues: list[IssueEntry] = field(default_factory=list)
    reels: list[ReelEntry] = field(default_factory=list)
    skip_dirs: list[str] = field(default_factory=list)

    def kept_issues(self) -> list[IssueEntry]:
        return [i for i in self.issues if not i.skip]

    def to_xml(self) -> str:
        attrs = [
            ("xmlns:ndnp", NDNP_NS),
            ("xmlns:xsi", XSI_NS),
            ("xmlns", NDNP_NS),
            ("name", self.name),
            ("awardee", self.awardee),
            ("awardYear", self.award_year),
        ]
        open_tag = "<ndnp:batch " + " ".join(f"{k}={quoteattr(v)}" for k, v in attrs) + ">"

        lines = [open_tag]
        for i in self.kept_issues():
            lines.append(
                f"\t<issue lccn={quoteattr(i.lccn)} issueDate={quoteattr(i.issue_date)} "
                f"editionOrder={quoteattr(i.edition)}>{escape(i.path)}</issue>"
            )
        for r in self.reels:
            lines.append(f"\t<reel reelNumber={quoteattr(r.reel_number)}>{escape(r.path)}</reel>")
        lines.append("</ndnp:batch>")
        return _XML_HEADER + "\n".join(lines) + "\n"

    def write(self, path: str | Path) -> None:
        """Serialize to path, leaving out every issue marked for skipping."""
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_xml(), encoding="utf-8")


def _ndnp(tag: str) -> str:
    return f"{{{NDNP_NS}}}{tag}"


def parse_batch_xml(data: bytes | str) -> BatchManifest:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ManifestError(f"Invalid batch XML: {e}") from e

    if root.tag != _ndnp("batch"):
        raise ManifestError(f"Unexpected root element {root.tag!r}; expected ndnp batch.")

    b = BatchManifest(
        name=root.get("name", ""),
        awardee=root.get("awardee", ""),
        award_year=root.get("awardYear", ""),
    )
    for el in root.findall(_ndnp("issue")):
        b.issues.append(
            IssueEntry(
                lccn=el.get("lccn", ""),
                issue_date=el.get("issueDate", ""),
                edition=el.get("editionOrder", ""),
                path=(el.text or "").strip(),
            )
        )
    for el in root.findall(_ndnp("reel")):
        b.reels.append(ReelEntry(reel_number=el.get("reelNumber", ""), path=(el.text or "").strip()))
    return b


def parse_batch(path: str | Path, skip_keys: list[str] | None = None) -> BatchManifest:
    """Read a batch.xml and mark the issues named by skip_keys for removal.

    Any key that doesn't match an issue in the batch is an error, and no
    issue is marked in that case.
    """
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise ManifestError(f"Unable to read {str(p)!r}: {e}") from e

    b = parse_batch_xml(data)
    if not b.issues:
        raise ManifestError("parsed data has no issues")

    by_key = {i.normalized_key: i for i in b.issues}
    matched: list[IssueEntry] = []
    for raw in skip_keys or []:
        key = keyfix(raw)
        issue = by_key.get(key)
        if issue is None:
            raise ManifestError(f"issuekey {raw!r} not in batch")
        matched.append(issue)

    for issue in matched:
        if issue.skip:
            continue
        issue.skip = True
        b.skip_dirs.append(issue.directory)
    return b


def validate_batch(batch_dir: str | Path) -> BatchManifest:
    """Quick sanity check of a batch before loading it.

    Confirms data/batch.xml parses and that each issue's XML exists as a
    regular file. Image files are not inspected.
    """
    root = Path(batch_dir)
    manifest_path = root / "data" / "batch.xml"
    b = parse_batch(manifest_path)

    for issue in b.issues:
        # Issue paths, with or without a leading "./", are relative to batch.xml.
        fp = manifest_path.parent / issue.path
        if not fp.exists():
            raise ManifestError(f"checking issue file {str(fp)!r}: no such file")
        if not fp.is_file():
            raise ManifestError(f"checking issue file {str(fp)!r}: not a regular file")
    return b

