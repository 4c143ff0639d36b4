"""
证书过期计算服务
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models import CertificateSummary, CheckOutcome, CheckStatus, GraceRule, Target


class ExpiryCalculator:
    """证书过期计算器"""

    def __init__(self, grace_rules: Optional[List[GraceRule]] = None, default_grace_days: int = 28):
        """
        初始化过期计算器

        Args:
            grace_rules: 按颁发者设置的宽限期规则，按声明顺序匹配
            default_grace_days: 没有规则匹配时的宽限天数，默认28天
        """
        self.grace_rules = list(grace_rules or [])
        self.default_grace_days = default_grace_days

    def calculate_days_until_expiry(self, not_after: datetime, now: Optional[datetime] = None) -> int:
        """
        计算距离过期的天数（向下取整）

        Args:
            not_after: 证书到期时间
            now: 当前时间，默认为UTC当前时间

        Returns:
            int: 剩余天数（负数表示已过期）
        """
        now = now or datetime.now(timezone.utc)
        delta = not_after - now
        return delta.days

    def resolve_grace_days(self, issuer: str) -> int:
        """
        确定适用的宽限天数，第一条匹配的规则生效

        Args:
            issuer: RFC2253格式的颁发者DN

        Returns:
            int: 宽限天数
        """
        for rule in self.grace_rules:
            if rule.matches(issuer):
                return rule.days
        return self.default_grace_days

    def evaluate(self, target: Target, certificate: CertificateSummary,
                 now: Optional[datetime] = None) -> CheckOutcome:
        """
        对证书进行分类

        Args:
            target: 检查目标
            certificate: 证书摘要
            now: 当前时间

        Returns:
            CheckOutcome: 已过期、即将过期或正常
        """
        days_remaining = self.calculate_days_until_expiry(certificate.not_after, now)
        if days_remaining < 0:
            return CheckOutcome.expired(target, certificate, days_remaining)

        grace_days = self.resolve_grace_days(certificate.issuer)
        if days_remaining < grace_days:
            return CheckOutcome.warning(target, certificate, days_remaining, grace_days)
        return CheckOutcome.ok(target, certificate, days_remaining, grace_days)

    def categorize_outcomes(self, outcomes: List[CheckOutcome]) -> Dict[str, List[CheckOutcome]]:
        """
        对检查结果进行分类

        Args:
            outcomes: 检查结果列表

        Returns:
            dict: 分类结果
        """
        categorized = {status.value: [] for status in CheckStatus}
        for outcome in outcomes:
            categorized[outcome.status.value].append(outcome)
        return categorized

    def get_expiry_summary(self, outcomes: List[CheckOutcome]) -> str:
        """
        获取过期状态摘要

        Args:
            outcomes: 检查结果列表

        Returns:
            str: 摘要信息
        """
        categorized = self.categorize_outcomes(outcomes)

        summary_parts = [f"总计: {len(outcomes)} 个目标"]

        labels = [
            (CheckStatus.EXPIRED, "已过期"),
            (CheckStatus.WARNING, "即将过期"),
            (CheckStatus.OK, "正常"),
            (CheckStatus.FAILURE, "检查失败"),
            (CheckStatus.SKIPPED, "缓存跳过"),
        ]
        for status, label in labels:
            if categorized[status.value]:
                summary_parts.append(f"{label}: {len(categorized[status.value])} 个")

        return ", ".join(summary_parts)
