from __future__ import annotations

import os
import re
import tempfile

from .models import ManagedResource, ObservedState, SshdLockdownSpec, spec_as
from .system import CommandRunner

_MATCH_RE = re.compile(r"^\s*Match\s", re.IGNORECASE)


def _keyword_re(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"^\s*#?\s*{re.escape(keyword)}\s", re.IGNORECASE)


def parse_effective_config(dump: str) -> dict[str, str]:
    """Parse ``sshd -T`` output: one lowercase ``keyword value`` pair per line."""
    found: dict[str, str] = {}
    for line in dump.splitlines():
        parts = line.strip().split(None, 1)
        if parts:
            found.setdefault(parts[0].lower(), parts[1].strip() if len(parts) > 1 else "")
    return found


def is_locked_down(effective: dict[str, str], directives: dict[str, str]) -> bool:
    return all(effective.get(k.lower(), "").lower() == v.lower() for k, v in directives.items())


def apply_directives(text: str, directives: dict[str, str]) -> str:
    """Pin each directive at the top of the global section.

    sshd keeps the first value it reads, so the directives go ahead of any
    ``Include`` and drop-ins cannot override them. Other global lines for the
    same keyword (commented or not) are dropped; ``Match`` blocks are left as
    they are.
    """
    lines = text.splitlines()
    match_at = next((i for i, line in enumerate(lines) if _MATCH_RE.match(line)), len(lines))
    head, tail = lines[:match_at], lines[match_at:]

    patterns = [_keyword_re(k) for k in directives]
    head = [line for line in head if not any(p.match(line) for p in patterns)]
    # After the leading comment block, before the first setting or Include.
    insert_at = next((i for i, line in enumerate(head) if line.strip() and not line.lstrip().startswith("#")), len(head))
    pinned = [f"{keyword} {value}" for keyword, value in directives.items()]

    out = head[:insert_at] + pinned + head[insert_at:] + tail
    return "\n".join(out) + "\n"


class SshdHandler:
    """Locks down the SSH daemon config; sshd is restarted only when the file changed.

    The probe asks sshd itself for the effective configuration, so values
    coming from ``Include``d drop-ins are taken into account.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def probe(self, resource: ManagedResource) -> ObservedState:
        spec = spec_as(resource, SshdLockdownSpec)
        dump = self.runner.run(["sshd", "-T", "-f", spec.path]).stdout
        if is_locked_down(parse_effective_config(dump), spec.directives):
            return ObservedState.PRESENT_RUNNING
        return ObservedState.ABSENT

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, SshdLockdownSpec)
        with open(spec.path, encoding="utf-8") as fh:
            text = fh.read()
        new_text = apply_directives(text, spec.directives)

        directory = os.path.dirname(os.path.abspath(spec.path))
        mode = os.stat(spec.path).st_mode & 0o777
        fd, tmp = tempfile.mkstemp(prefix=".sshd_config.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(new_text)
            os.chmod(tmp, mode)
            # Validate before the live config is replaced.
            self.runner.run(["sshd", "-t", "-f", tmp])
            os.replace(tmp, spec.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self.runner.run(["systemctl", "restart", spec.service])

    def start(self, resource: ManagedResource) -> None:
        raise RuntimeError("sshd lockdown has no stopped state")
