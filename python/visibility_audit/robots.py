"""
robots.txt の解析と判定。

標準ライブラリの RobotFileParser は先頭一致で判定するため、ここでは
最長一致（同じ長さなら Allow 優先）で判定する独自実装を使う。解析結果は
``RobotsRule`` のリストとしてクロール状態に保存できる。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, List

from .models import RobotsRule


@dataclass
class RobotsPolicy:
    rules: List[RobotsRule] = field(default_factory=list)
    sitemaps: List[str] = field(default_factory=list)


@dataclass
class _Group:
    agents: List[str] = field(default_factory=list)
    rules: List[RobotsRule] = field(default_factory=list)


def agent_token(user_agent: str) -> str:
    """``VisibilityAuditBot/1.0 (+url)`` から ``visibilityauditbot`` を取り出す。"""
    return user_agent.split("/")[0].split()[0].strip().lower() if user_agent.strip() else "*"


def parse_robots_txt(text: str, user_agent: str = "*") -> RobotsPolicy:
    """自分向けのグループがあればそれを、なければ ``*`` のグループを採用する。

    User-agent 行より前に書かれたルールは全クローラ向けとして扱う。
    """
    token = agent_token(user_agent)
    groups: List[_Group] = []
    current: _Group | None = None
    sitemaps: List[str] = []
    last_was_agent = False

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        name, value = line.split(":", 1)
        name = name.strip().lower()
        value = value.strip()

        if name == "user-agent":
            if current is None or not last_was_agent:
                current = _Group()
                groups.append(current)
            if value:
                current.agents.append(value.lower())
            last_was_agent = True
            continue
        last_was_agent = False

        if name == "sitemap":
            if value:
                sitemaps.append(value)
            continue
        if name not in {"allow", "disallow"}:
            continue
        if current is None:
            current = _Group(agents=["*"])
            groups.append(current)
        # 空の Disallow は「すべて許可」を意味するので規則として持たない
        if not value:
            continue
        current.rules.append(RobotsRule(path=value, allow=name == "allow"))

    specific = [group for group in groups if token != "*" and any(_agent_matches(agent, token) for agent in group.agents)]
    chosen = specific or [group for group in groups if "*" in group.agents]
    rules = [rule for group in chosen for rule in group.rules]
    return RobotsPolicy(rules=rules, sitemaps=sitemaps)


def _agent_matches(agent: str, token: str) -> bool:
    return bool(agent) and agent != "*" and agent in token


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    anchored = pattern.endswith("$")
    if anchored:
        pattern = pattern[:-1]
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(body + ("$" if anchored else ""))


def is_allowed(path: str, rules: Iterable[RobotsRule]) -> bool:
    best_length = -1
    allowed = True
    for rule in rules:
        if not _compile(rule.path).match(path):
            continue
        length = len(rule.path)
        if length > best_length or (length == best_length and rule.allow):
            best_length = length
            allowed = rule.allow
    return allowed
