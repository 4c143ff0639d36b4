"""
检查报告格式化测试
"""
from datetime import datetime, timezone

from starttls_cert_monitor.models import CertificateSummary, CheckOutcome, CheckResult, Target
from starttls_cert_monitor.services.report import ReportFormatter


def make_summary() -> CertificateSummary:
    return CertificateSummary(
        subject="CN=mail.example.com",
        issuer="CN=R3,O=Let's Encrypt,C=US",
        not_before=datetime(2024, 1, 1, tzinfo=timezone.utc),
        not_after=datetime(2024, 4, 1, 8, 30, 0, tzinfo=timezone.utc),
        subject_alt_names=["mail.example.com", "smtp.example.com"],
    )


class TestReportFormatter:
    """报告格式化测试类"""

    def setup_method(self):
        self.formatter = ReportFormatter()
        self.ok = CheckOutcome.ok(Target("ok.example.com", 443), make_summary(), 60, 28)
        self.warning = CheckOutcome.warning(Target("mail.example.com", 587), make_summary(), 10, 28)
        self.expired = CheckOutcome.expired(Target("old.example.com", 993), make_summary(), -4)
        self.failure = CheckOutcome.failure("imap.example.com:143", "ProtocolError", "IMAP: STARTTLS 失败")
        self.skipped = CheckOutcome.skipped(Target("cached.example.com", 443), 1700000000.0)

    def test_format_outcome(self):
        """测试单行结果"""
        assert self.formatter.format_outcome(self.ok) == "  ok.example.com:443: 正常，剩余 60 天"
        assert self.formatter.format_outcome(self.warning) == "  mail.example.com:587: 剩余 10 天（宽限 28 天）"
        assert self.formatter.format_outcome(self.expired) == "  old.example.com:993: 已过期 4 天"
        assert self.formatter.format_outcome(self.failure) == "  imap.example.com:143: 失败 - IMAP: STARTTLS 失败"
        assert self.formatter.format_outcome(self.skipped) == "  cached.example.com:443: 跳过（缓存）"

    def test_summary_with_problems(self):
        """测试汇总报告列出问题目标"""
        result = CheckResult([self.ok, self.warning, self.expired, self.failure, self.skipped], 1.5)

        report = self.formatter.format_summary(result)

        assert "检查 4 个目标, 缓存跳过 1 个, 耗时 1.50 秒" in report
        assert "已过期证书:" in report
        assert "• old.example.com:993" in report
        assert "已过期: 4 天" in report
        assert "即将过期证书:" in report
        assert "剩余天数: 10 天 (宽限 28 天)" in report
        assert "过期时间: 2024-04-01 08:30:00 UTC" in report
        assert "颁发者: CN=R3,O=Let's Encrypt,C=US" in report
        assert "无法检查的目标:" in report
        assert "  ProtocolError: IMAP: STARTTLS 失败" in report
        assert "失败类型统计: ProtocolError 1" in report
        assert "正常证书:" not in report
        assert "所有证书状态正常" not in report

    def test_summary_all_ok(self):
        """测试没有问题时的汇总"""
        report = self.formatter.format_summary(CheckResult([self.ok, self.skipped]))

        assert "所有证书状态正常。" in report
        assert "无法检查的目标" not in report

    def test_summary_verbose(self):
        """测试详细模式包含正常证书和SAN"""
        report = ReportFormatter(verbose=True).format_summary(CheckResult([self.ok]))

        assert "正常证书:" in report
        assert "• ok.example.com:443" in report
        assert "主题: CN=mail.example.com" in report
        assert "SAN: mail.example.com, smtp.example.com" in report

    def test_problem_outcomes_set_exit_code(self):
        """测试即将过期、已过期和失败计为问题，正常和跳过不计"""
        assert CheckResult([self.ok, self.skipped]).exit_code == 0
        for outcome in (self.warning, self.expired, self.failure):
            assert outcome.is_problem
            assert CheckResult([self.ok, outcome]).exit_code == 1
        assert not self.skipped.is_problem
