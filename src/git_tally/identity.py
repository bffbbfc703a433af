from __future__ import annotations

import dataclasses
import hashlib
import re
from pathlib import Path

import structlog

from .models import Identity

logger = structlog.get_logger(__name__)

LOCAL = "local"
GLOBAL = "global"

_ENTRY = re.compile(r"([^<>]*)<([^<>]*)>")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_name(name: str) -> str:
    return name.strip().casefold()


@dataclasses.dataclass(frozen=True)
class MailmapRule:
    commit_email: str
    proper_name: str | None = None
    proper_email: str | None = None
    commit_name: str | None = None
    source: str = LOCAL

    def matches(self, name: str, email: str) -> bool:
        if normalize_email(email) != normalize_email(self.commit_email):
            return False
        if self.commit_name is not None and normalize_name(name) != normalize_name(self.commit_name):
            return False
        return True

    def is_target(self, name: str, email: str) -> bool:
        """True when `name <email>` is already spelled exactly as this rule rewrites it."""
        if self.proper_email is not None:
            if email != self.proper_email:
                return False
        elif normalize_email(email) != normalize_email(self.commit_email):
            return False
        return self.proper_name is None or name == self.proper_name

    def apply(self, name: str, email: str) -> Identity:
        return Identity(
            name=self.proper_name if self.proper_name is not None else name,
            email=self.proper_email if self.proper_email is not None else email,
        )


def parse_mailmap(text: str, source: str = LOCAL) -> list[MailmapRule]:
    """
    Parse git mailmap syntax:

      Proper Name <commit@email>
      <proper@email> <commit@email>
      Proper Name <proper@email> <commit@email>
      Proper Name <proper@email> Commit Name <commit@email>

    Lines starting with '#' are comments; anything after the last '>' is
    ignored. Lines that fit none of the forms are skipped.
    """
    rules: list[MailmapRule] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        entries = _ENTRY.findall(line)
        if len(entries) == 1:
            name, email = entries[0][0].strip(), entries[0][1].strip()
            if not name or not email:
                continue
            rules.append(MailmapRule(commit_email=email, proper_name=name, source=source))
        elif len(entries) >= 2:
            (name1, email1), (name2, email2) = entries[0], entries[1]
            name1, email1 = name1.strip(), email1.strip()
            name2, email2 = name2.strip(), email2.strip()
            if not email2:
                continue
            rules.append(
                MailmapRule(
                    commit_email=email2,
                    proper_name=name1 or None,
                    proper_email=email1 or None,
                    commit_name=name2 or None,
                    source=source,
                )
            )
    return rules


@dataclasses.dataclass(frozen=True)
class MailmapRuleSet:
    """
    Ordered mailmap rules, local file first, then the global file.

    `resolve` applies one rule: the first matching rule that names the commit
    name, else the first email-only match. An identity already spelled
    exactly like some rule's canonical target is returned unchanged, which
    keeps resolution idempotent even for mailmaps that chain aliases.
    """

    rules: tuple[MailmapRule, ...] = ()
    fingerprint: str = ""
    _by_email: dict[str, list[MailmapRule]] = dataclasses.field(default_factory=dict, init=False, repr=False, compare=False)
    _by_target: dict[str, list[MailmapRule]] = dataclasses.field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_email: dict[str, list[MailmapRule]] = {}
        by_target: dict[str, list[MailmapRule]] = {}
        for rule in self.rules:
            by_email.setdefault(normalize_email(rule.commit_email), []).append(rule)
            target = rule.proper_email if rule.proper_email is not None else rule.commit_email
            by_target.setdefault(normalize_email(target), []).append(rule)
        object.__setattr__(self, "_by_email", by_email)
        object.__setattr__(self, "_by_target", by_target)

    def resolve(self, name: str, email: str) -> Identity:
        key = normalize_email(email)
        for rule in self._by_target.get(key, ()):
            if rule.is_target(name, email):
                return Identity(name=name, email=email)
        candidates = [rule for rule in self._by_email.get(key, ()) if rule.matches(name, email)]
        if not candidates:
            return Identity(name=name, email=email)
        # A rule naming the commit name beats an email-only rule.
        rule = next((r for r in candidates if r.commit_name is not None), candidates[0])
        return rule.apply(name, email)

    def __len__(self) -> int:
        return len(self.rules)


def _read_source(path: Path | None, label: str) -> bytes | None:
    if path is None:
        return None
    try:
        return path.read_bytes()
    except FileNotFoundError:
        logger.debug("mailmap not found", source=label, path=str(path))
        return None
    except OSError as e:
        logger.warning("mailmap unreadable; ignoring", source=label, path=str(path), error=str(e))
        return None


def mailmap_fingerprint(local: bytes | None, global_: bytes | None) -> str:
    h = hashlib.sha256()
    for label, content in ((LOCAL, local), (GLOBAL, global_)):
        h.update(label.encode("ascii") + b":")
        if content is None:
            h.update(b"<absent>")
        else:
            h.update(b"<present>")
            h.update(hashlib.sha256(content).digest())
        h.update(b"\n")
    return h.hexdigest()


def repo_mailmap_path(repo_root: Path) -> Path:
    return repo_root / ".mailmap"


def load_mailmap(repo_root: Path | None, global_path: Path | None = None) -> MailmapRuleSet:
    local_bytes = _read_source(repo_mailmap_path(repo_root) if repo_root is not None else None, LOCAL)
    global_bytes = _read_source(global_path, GLOBAL)

    rules: list[MailmapRule] = []
    if local_bytes is not None:
        rules.extend(parse_mailmap(local_bytes.decode("utf-8", errors="replace"), source=LOCAL))
    if global_bytes is not None:
        rules.extend(parse_mailmap(global_bytes.decode("utf-8", errors="replace"), source=GLOBAL))

    ruleset = MailmapRuleSet(rules=tuple(rules), fingerprint=mailmap_fingerprint(local_bytes, global_bytes))
    logger.debug(
        "mailmap loaded",
        local_rules=sum(1 for r in rules if r.source == LOCAL),
        global_rules=sum(1 for r in rules if r.source == GLOBAL),
        fingerprint=ruleset.fingerprint[:12],
    )
    return ruleset
