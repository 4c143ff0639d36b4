"""
数据模型定义
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Pattern

from .exceptions import ConfigError


@dataclass(frozen=True)
class Target:
    """检查目标"""
    host: str
    port: int
    sni: Optional[str] = None

    @property
    def key(self) -> str:
        """缓存键，IPv6地址使用方括号"""
        host = f"[{self.host}]" if ':' in self.host else self.host
        key = f"{host}:{self.port}"
        if self.sni:
            key += f"/{self.sni}"
        return key

    @property
    def server_name(self) -> str:
        """TLS握手时发送的SNI，未配置时使用主机名"""
        return self.sni or self.host

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class LiteralIssuerMatcher:
    """按颁发者DN全文匹配"""
    text: str

    def matches(self, issuer: str) -> bool:
        return issuer == self.text


@dataclass(frozen=True)
class PatternIssuerMatcher:
    """按正则表达式搜索颁发者DN"""
    regex: Pattern

    def matches(self, issuer: str) -> bool:
        return self.regex.search(issuer) is not None


@dataclass(frozen=True)
class GraceRule:
    """颁发者宽限期规则"""
    matcher: object
    days: int

    @classmethod
    def from_pattern(cls, pattern: str, days: int) -> "GraceRule":
        """
        根据配置文本创建规则

        以斜杠包裹的文本（如 /Let's Encrypt/）按正则处理，其余按全文匹配。

        Args:
            pattern: 颁发者文本或 /正则/
            days: 宽限天数

        Returns:
            GraceRule: 规则

        Raises:
            ConfigError: 正则表达式无效
        """
        if len(pattern) >= 2 and pattern.startswith('/') and pattern.endswith('/'):
            try:
                regex = re.compile(pattern[1:-1])
            except re.error as e:
                raise ConfigError(f"颁发者正则表达式无效 {pattern}: {e}") from e
            return cls(PatternIssuerMatcher(regex), days)
        return cls(LiteralIssuerMatcher(pattern), days)

    def matches(self, issuer: str) -> bool:
        return self.matcher.matches(issuer)


@dataclass
class CertificateSummary:
    """叶子证书摘要"""
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    subject_alt_names: List[str] = field(default_factory=list)


class CheckStatus(Enum):
    """检查结果类型"""
    OK = "ok"
    WARNING = "warning"
    EXPIRED = "expired"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class CheckOutcome:
    """单个目标的检查结果"""
    label: str
    status: CheckStatus
    target: Optional[Target] = None
    certificate: Optional[CertificateSummary] = None
    days_remaining: Optional[int] = None
    grace_days: Optional[int] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    last_checked: Optional[float] = None

    @classmethod
    def ok(cls, target: Target, certificate: CertificateSummary,
           days_remaining: int, grace_days: int) -> "CheckOutcome":
        return cls(target.key, CheckStatus.OK, target, certificate,
                   days_remaining=days_remaining, grace_days=grace_days)

    @classmethod
    def warning(cls, target: Target, certificate: CertificateSummary,
                days_remaining: int, grace_days: int) -> "CheckOutcome":
        return cls(target.key, CheckStatus.WARNING, target, certificate,
                   days_remaining=days_remaining, grace_days=grace_days)

    @classmethod
    def expired(cls, target: Target, certificate: CertificateSummary,
                days_remaining: int) -> "CheckOutcome":
        return cls(target.key, CheckStatus.EXPIRED, target, certificate,
                   days_remaining=days_remaining)

    @classmethod
    def failure(cls, label: str, error_kind: str, message: str,
                target: Optional[Target] = None) -> "CheckOutcome":
        return cls(label, CheckStatus.FAILURE, target,
                   error_kind=error_kind, message=message)

    @classmethod
    def skipped(cls, target: Target, last_checked: float) -> "CheckOutcome":
        return cls(target.key, CheckStatus.SKIPPED, target, last_checked=last_checked)

    @property
    def days_overdue(self) -> int:
        """已过期天数"""
        if self.status is not CheckStatus.EXPIRED:
            return 0
        return -self.days_remaining

    @property
    def is_problem(self) -> bool:
        """是否需要出现在汇总报告中"""
        return self.status in (CheckStatus.WARNING, CheckStatus.EXPIRED, CheckStatus.FAILURE)


@dataclass
class CheckResult:
    """一次运行的检查结果统计"""
    outcomes: List[CheckOutcome] = field(default_factory=list)
    execution_time: float = 0.0

    @property
    def failures(self) -> List[CheckOutcome]:
        return [o for o in self.outcomes if o.status is CheckStatus.FAILURE]

    @property
    def expiring(self) -> List[CheckOutcome]:
        """即将过期和已过期的证书"""
        return [o for o in self.outcomes
                if o.status in (CheckStatus.WARNING, CheckStatus.EXPIRED)]

    @property
    def skipped(self) -> List[CheckOutcome]:
        return [o for o in self.outcomes if o.status is CheckStatus.SKIPPED]

    @property
    def checked(self) -> List[CheckOutcome]:
        return [o for o in self.outcomes if o.status is not CheckStatus.SKIPPED]

    @property
    def has_problems(self) -> bool:
        return any(o.is_problem for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_problems else 0


@dataclass
class CheckDirective:
    """配置文件中的一条 check 指令"""
    spec: str
    ports: List[int] = field(default_factory=list)
    line: int = 0

    def target_specs(self) -> List[str]:
        """
        展开为目标描述列表

        Returns:
            List[str]: 每个端口对应一个目标描述
        """
        if not self.ports:
            return [self.spec]

        host, slash, sni = self.spec.partition('/')
        if host.startswith('['):
            host = host[:host.index(']') + 1]
        elif host.count(':') == 1:
            host = host.split(':')[0]
        suffix = f"/{sni}" if slash else ""
        return [f"{host}:{port}{suffix}" for port in self.ports]


@dataclass
class MonitorConfig:
    """监控配置"""
    checks: List[CheckDirective] = field(default_factory=list)
    grace_rules: List[GraceRule] = field(default_factory=list)
    default_grace_days: int = 28
    cache_interval: int = 0
    cache_file: Optional[str] = None
    connect_timeout: float = 3.0
    read_timeout: Optional[float] = None
    syslog: bool = False
    log_level: Optional[str] = None

    def target_specs(self) -> List[str]:
        specs = []
        for directive in self.checks:
            specs.extend(directive.target_specs())
        return specs
