"""
日志服务
"""
import os
import logging
import logging.handlers
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..interfaces import LoggerServiceInterface
from ..models import CheckOutcome, CheckStatus, Target


class LoggerService(LoggerServiceInterface):
    """日志服务实现"""

    def __init__(self, logger_name: str = "starttls_cert_monitor", log_level: Optional[str] = None,
                 use_syslog: bool = False, syslog_address: str = "/dev/log"):
        """
        初始化日志服务

        Args:
            logger_name: 日志器名称
            log_level: 日志级别，如果为None则从环境变量读取
            use_syslog: 是否同时输出到syslog
            syslog_address: syslog套接字地址
        """
        self.logger_name = logger_name
        self.log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')
        self.use_syslog = use_syslog
        self.syslog_address = syslog_address

        # 配置日志器
        self.logger = logging.getLogger(logger_name)
        self._configure_logger()

        # 执行统计
        self.reset_stats()

    def _configure_logger(self):
        """配置日志器"""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        self.logger.setLevel(level)

        # 避免重复添加处理器
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(level)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            self.logger.addHandler(handler)

        if self.use_syslog and not any(
            isinstance(h, logging.handlers.SysLogHandler) for h in self.logger.handlers
        ):
            self._add_syslog_handler(level)

        # 防止日志传播到根日志器
        self.logger.propagate = False

    def _add_syslog_handler(self, level: int):
        try:
            handler = logging.handlers.SysLogHandler(address=self.syslog_address)
        except OSError as e:
            self.logger.warning(f"无法连接syslog {self.syslog_address}: {e}")
            return
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter('%(name)s: %(levelname)s %(message)s'))
        self.logger.addHandler(handler)

    def log_check_start(self, target_count: int):
        """
        记录检查开始

        Args:
            target_count: 要检查的目标数量
        """
        self.execution_stats['start_time'] = datetime.now(timezone.utc)
        self.execution_stats['total_targets'] = target_count

        self.logger.info(f"开始证书检查，共 {target_count} 个目标")

    def log_target_start(self, target: Target):
        self.logger.info(f"检查 {target}")

    def log_outcome(self, outcome: CheckOutcome):
        """
        记录检查结果

        Args:
            outcome: 检查结果
        """
        status = outcome.status
        certificate = outcome.certificate

        if status is CheckStatus.SKIPPED:
            self.execution_stats['skipped_checks'] += 1
            self.logger.info(f"跳过 {outcome.label}（缓存间隔内已检查）")
        elif status is CheckStatus.FAILURE:
            self.execution_stats['failed_checks'] += 1
            self.logger.warning(f"检查失败 - 目标: {outcome.label}, {outcome.error_kind}: {outcome.message}")
        elif status is CheckStatus.EXPIRED:
            self.execution_stats['successful_checks'] += 1
            self.logger.warning(
                f"证书已过期 - 目标: {outcome.label}, "
                f"过期时间: {certificate.not_after.isoformat()}, "
                f"已过期: {outcome.days_overdue} 天, "
                f"颁发者: {certificate.issuer}"
            )
        elif status is CheckStatus.WARNING:
            self.execution_stats['successful_checks'] += 1
            self.logger.warning(
                f"证书即将过期 - 目标: {outcome.label}, "
                f"过期时间: {certificate.not_after.isoformat()}, "
                f"剩余天数: {outcome.days_remaining} 天 (宽限 {outcome.grace_days} 天), "
                f"颁发者: {certificate.issuer}"
            )
        else:
            self.execution_stats['successful_checks'] += 1
            self.logger.info(
                f"证书正常 - 目标: {outcome.label}, "
                f"剩余天数: {outcome.days_remaining} 天, "
                f"颁发者: {certificate.issuer}"
            )

    def log_error(self, label: str, error: Exception):
        """
        记录错误信息

        Args:
            label: 目标描述
            error: 异常对象
        """
        self.execution_stats['errors'].append({
            'target': label,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

        # 记录详细的堆栈跟踪（调试级别）
        self.logger.debug(f"目标 {label} 错误堆栈跟踪:\n{traceback.format_exc()}")

    def log_check_end(self):
        """记录检查结束"""
        self.execution_stats['end_time'] = datetime.now(timezone.utc)
        summary = self.get_execution_summary()

        self.logger.info(
            f"证书检查完成，耗时 {summary['duration_seconds']:.2f} 秒: "
            f"总计 {summary['total_targets']} 个目标, "
            f"成功 {summary['successful_checks']} 个, "
            f"失败 {summary['failed_checks']} 个, "
            f"跳过 {summary['skipped_checks']} 个"
        )

    def get_execution_summary(self) -> Dict[str, Any]:
        """
        获取执行摘要

        Returns:
            Dict[str, Any]: 执行摘要信息
        """
        stats = self.execution_stats
        duration = 0.0
        if stats['start_time'] and stats['end_time']:
            duration = (stats['end_time'] - stats['start_time']).total_seconds()

        return {
            'start_time': stats['start_time'].isoformat() if stats['start_time'] else None,
            'end_time': stats['end_time'].isoformat() if stats['end_time'] else None,
            'duration_seconds': duration,
            'total_targets': stats['total_targets'],
            'successful_checks': stats['successful_checks'],
            'failed_checks': stats['failed_checks'],
            'skipped_checks': stats['skipped_checks'],
            'error_count': len(stats['errors']),
            'errors': stats['errors']
        }

    def reset_stats(self):
        """重置执行统计"""
        self.execution_stats = {
            'start_time': None,
            'end_time': None,
            'total_targets': 0,
            'successful_checks': 0,
            'failed_checks': 0,
            'skipped_checks': 0,
            'errors': []
        }
