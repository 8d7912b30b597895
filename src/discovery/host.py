"""CI host adapter that reads a Jenkins home directory.

Layout understood::

    $JENKINS_HOME/
        jenkins.model.JenkinsLocationConfiguration.xml   (<jenkinsUrl>)
        jobs/<name>/config.xml
        jobs/<name>/builds/<number>/{build.xml,log}
        jobs/<folder>/jobs/<child>/...                   (folders)
        jobs/<project>/branches/<branch>/...             (multi-branch)
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from src.shared.constants import OUTCOME_FILE
from src.shared.utils import load_json

logger = logging.getLogger(__name__)

_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>")
_LOCATION_FILE = "jenkins.model.JenkinsLocationConfiguration.xml"
_MULTIBRANCH_MARKER = "MultiBranchProject"
_FOLDER_MARKER = "Folder"


def _parse_xml(path: Path) -> ET.Element | None:
    """Parse a Jenkins XML file; the XML 1.1 declaration is stripped first."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
        return ET.fromstring(_XML_DECL_RE.sub("", text, count=1))
    except (OSError, ET.ParseError) as exc:
        logger.debug("Cannot parse %s: %s", path, exc)
        return None


@dataclass
class JenkinsRun:
    """One build directory."""

    number: int
    build_dir: Path | None
    timestamp_ms: int = 0
    parameters: dict[str, str] = field(default_factory=dict)
    action_names: list[str] = field(default_factory=list)

    @classmethod
    def from_dir(cls, build_dir: Path) -> JenkinsRun:
        run = cls(number=int(build_dir.name), build_dir=build_dir)
        root = _parse_xml(build_dir / "build.xml")
        if root is not None:
            timestamp = root.findtext("timestamp")
            if timestamp and timestamp.strip().isdigit():
                run.timestamp_ms = int(timestamp.strip())
            actions = root.find("actions")
            if actions is not None:
                run.action_names = [child.tag for child in actions]
            for params in root.iter("hudson.model.ParametersAction"):
                for param in params.iter():
                    name = param.findtext("name")
                    if name:
                        run.parameters[name] = param.findtext("value") or ""
        # Gates run through the CLI leave their parameters in the outcome file
        outcome = load_json(build_dir / OUTCOME_FILE)
        if outcome and isinstance(outcome.get("parameters"), dict):
            for key, value in outcome["parameters"].items():
                run.parameters.setdefault(key, str(value))
        if not run.timestamp_ms:
            try:
                run.timestamp_ms = int(build_dir.stat().st_mtime * 1000)
            except OSError:
                pass
        return run

    def log_lines(self) -> Iterator[str]:
        if self.build_dir is None:
            return
        log_path = self.build_dir / "log"
        if not log_path.exists():
            return
        with open(log_path, "r", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                yield line.rstrip("\n")


@dataclass
class JenkinsJob:
    """One job directory."""

    full_name: str
    job_dir: Path
    url_path: str
    root_url: str | None = None
    kind: str = ""
    build_steps: list[str] = field(default_factory=list)
    parent_is_multibranch: bool = False
    _siblings: list[JenkinsJob] = field(default_factory=list, repr=False)
    _last_build: JenkinsRun | None = field(default=None, repr=False)
    _last_build_loaded: bool = field(default=False, repr=False)

    @property
    def absolute_url(self) -> str | None:
        if not self.root_url:
            return None
        return self.root_url.rstrip("/") + "/" + self.url_path

    @property
    def last_build(self) -> JenkinsRun | None:
        if not self._last_build_loaded:
            self._last_build = self._load_last_build()
            self._last_build_loaded = True
        return self._last_build

    def _load_last_build(self) -> JenkinsRun | None:
        builds = self.job_dir / "builds"
        if not builds.is_dir():
            return None
        numbers = [
            int(entry.name)
            for entry in builds.iterdir()
            if entry.is_dir() and entry.name.isdigit()
        ]
        if not numbers:
            return None
        return JenkinsRun.from_dir(builds / str(max(numbers)))

    def definition_text(self) -> str:
        return (self.job_dir / "config.xml").read_text(encoding="utf-8", errors="replace")

    def siblings(self) -> Iterable[JenkinsJob]:
        return list(self._siblings)


class JenkinsHomeHost:
    """Enumerates every job under a Jenkins home directory."""

    def __init__(self, jenkins_home: Path | str, root_url: str | None = None) -> None:
        self.jenkins_home = Path(jenkins_home)
        self.root_url = root_url or self._read_root_url()

    def _read_root_url(self) -> str | None:
        root = _parse_xml(self.jenkins_home / _LOCATION_FILE)
        if root is None:
            return None
        url = (root.findtext("jenkinsUrl") or "").strip()
        if not url:
            return None
        return url if url.endswith("/") else url + "/"

    def all_jobs(self) -> Iterable[JenkinsJob]:
        jobs_dir = self.jenkins_home / "jobs"
        if not jobs_dir.is_dir():
            logger.warning("No jobs directory under %s", self.jenkins_home)
            return []
        return list(self._walk(jobs_dir, name_prefix="", url_prefix=""))

    def _walk(self, jobs_dir: Path, name_prefix: str, url_prefix: str) -> Iterator[JenkinsJob]:
        for entry in sorted(jobs_dir.iterdir()):
            config_path = entry / "config.xml"
            if not entry.is_dir() or not config_path.exists():
                continue
            name = f"{name_prefix}{entry.name}"
            url_path = f"{url_prefix}job/{entry.name}/"
            root = _parse_xml(config_path)
            kind = root.tag if root is not None else ""

            if _MULTIBRANCH_MARKER in kind:
                yield from self._branches(entry, name, url_path)
            elif _FOLDER_MARKER in kind and (entry / "jobs").is_dir():
                yield from self._walk(entry / "jobs", f"{name}/", url_path)
            else:
                yield self._job(name, entry, url_path, root)

    def _branches(self, project_dir: Path, name: str, url_path: str) -> Iterator[JenkinsJob]:
        branches_dir = project_dir / "branches"
        if not branches_dir.is_dir():
            return
        branches: list[JenkinsJob] = []
        for entry in sorted(branches_dir.iterdir()):
            if not (entry / "config.xml").exists():
                continue
            job = self._job(
                f"{name}/{entry.name}",
                entry,
                f"{url_path}job/{entry.name}/",
                _parse_xml(entry / "config.xml"),
            )
            job.parent_is_multibranch = True
            branches.append(job)
        for job in branches:
            job._siblings = [other for other in branches if other is not job]
        yield from branches

    def _job(
        self, name: str, job_dir: Path, url_path: str, root: ET.Element | None
    ) -> JenkinsJob:
        steps: list[str] = []
        if root is not None:
            builders = root.find("builders")
            if builders is not None:
                steps = [child.tag for child in builders]
        return JenkinsJob(
            full_name=name,
            job_dir=job_dir,
            url_path=url_path,
            root_url=self.root_url,
            kind=root.tag if root is not None else "",
            build_steps=steps,
        )
