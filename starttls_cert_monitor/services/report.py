"""
检查报告格式化
"""
from typing import List

from ..models import CheckOutcome, CheckResult, CheckStatus, Target
from .error_handler import CheckErrorHandler


class ReportFormatter:
    """标准输出报告"""

    def __init__(self, verbose: bool = False):
        """
        初始化报告格式化器

        Args:
            verbose: 是否输出正常证书的详细信息
        """
        self.verbose = verbose
        self.error_handler = CheckErrorHandler()

    def format_progress(self, target: Target) -> str:
        return f"检查 {target} ..."

    def format_outcome(self, outcome: CheckOutcome) -> str:
        """格式化单个目标的检查结果（一行）"""
        status = outcome.status
        if status is CheckStatus.SKIPPED:
            return f"  {outcome.label}: 跳过（缓存）"
        if status is CheckStatus.FAILURE:
            return f"  {outcome.label}: 失败 - {outcome.message}"
        if status is CheckStatus.EXPIRED:
            return f"  {outcome.label}: 已过期 {outcome.days_overdue} 天"
        if status is CheckStatus.WARNING:
            return f"  {outcome.label}: 剩余 {outcome.days_remaining} 天（宽限 {outcome.grace_days} 天）"
        return f"  {outcome.label}: 正常，剩余 {outcome.days_remaining} 天"

    def format_summary(self, result: CheckResult) -> str:
        """
        格式化运行结束时的汇总报告

        Args:
            result: 检查结果

        Returns:
            str: 报告文本
        """
        expired = [o for o in result.expiring if o.status is CheckStatus.EXPIRED]
        expiring = [o for o in result.expiring if o.status is CheckStatus.WARNING]
        healthy = [o for o in result.outcomes if o.status is CheckStatus.OK]

        lines = [
            "",
            "证书过期检查报告",
            "=" * 30,
            f"检查 {len(result.checked)} 个目标, 缓存跳过 {len(result.skipped)} 个, "
            f"耗时 {result.execution_time:.2f} 秒",
            "",
        ]

        if expired:
            lines.append("已过期证书:")
            for outcome in expired:
                lines.extend(self._certificate_lines(outcome, f"已过期: {outcome.days_overdue} 天"))
            lines.append("")

        if expiring:
            lines.append("即将过期证书:")
            for outcome in expiring:
                lines.extend(self._certificate_lines(
                    outcome, f"剩余天数: {outcome.days_remaining} 天 (宽限 {outcome.grace_days} 天)"
                ))
            lines.append("")

        if result.failures:
            lines.append("无法检查的目标:")
            for outcome in result.failures:
                lines.append(f"• {outcome.label}")
                lines.append(f"  {outcome.error_kind}: {outcome.message}")
            statistics = self.error_handler.get_error_statistics(
                [{'error_type': o.error_kind} for o in result.failures]
            )
            kinds = ", ".join(f"{kind} {count}" for kind, count in sorted(statistics['error_types'].items()))
            lines.append(f"失败类型统计: {kinds}")
            lines.append("")

        if self.verbose and healthy:
            lines.append("正常证书:")
            for outcome in healthy:
                lines.extend(self._certificate_lines(outcome, f"剩余天数: {outcome.days_remaining} 天"))
            lines.append("")

        if not result.has_problems:
            lines.append("所有证书状态正常。")

        return "\n".join(lines)

    def _certificate_lines(self, outcome: CheckOutcome, detail: str) -> List[str]:
        certificate = outcome.certificate
        lines = [
            f"• {outcome.label}",
            f"  过期时间: {certificate.not_after.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            f"  {detail}",
            f"  颁发者: {certificate.issuer}",
        ]
        if self.verbose:
            lines.append(f"  主题: {certificate.subject}")
            lines.append(f"  生效时间: {certificate.not_before.strftime('%Y-%m-%d %H:%M:%S')} UTC")
            if certificate.subject_alt_names:
                lines.append(f"  SAN: {', '.join(certificate.subject_alt_names)}")
        return lines
