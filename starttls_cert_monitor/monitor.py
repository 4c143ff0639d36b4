"""
证书检查调度
"""
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .exceptions import CertMonitorError
from .interfaces import CacheStoreInterface, DNSResolverInterface, LoggerServiceInterface
from .models import CheckOutcome, CheckResult, MonitorConfig, Target
from .services.error_handler import CheckErrorHandler
from .services.expiry_calculator import ExpiryCalculator
from .services.logger import LoggerService
from .services.negotiators import ProtocolNegotiatorService
from .services.report import ReportFormatter
from .services.target_resolver import TargetResolver
from .services.tls_handshake import TLSHandshakeExecutor
from .services.transport import Transport


class CertificateMonitor:
    """证书监控器主类，按顺序逐个检查目标"""

    def __init__(self,
                 config: MonitorConfig,
                 cache_store: Optional[CacheStoreInterface] = None,
                 dns_resolver: Optional[DNSResolverInterface] = None,
                 logger_service: Optional[LoggerServiceInterface] = None,
                 negotiator_service: Optional[ProtocolNegotiatorService] = None,
                 tls_executor: Optional[TLSHandshakeExecutor] = None,
                 expiry_calculator: Optional[ExpiryCalculator] = None,
                 reporter: Optional[ReportFormatter] = None,
                 transport_factory: Callable[..., Transport] = Transport.connect,
                 clock: Callable[[], float] = time.time,
                 output: Optional[Callable[[str], None]] = None):
        """
        初始化监控器

        Args:
            config: 监控配置
            cache_store: 缓存，为None时不使用缓存
            dns_resolver: 展开MX/SRV目标使用的DNS解析服务
            logger_service: 日志服务
            negotiator_service: STARTTLS协商服务
            tls_executor: TLS握手执行器
            expiry_calculator: 过期计算器，默认按配置中的宽限期规则创建
            reporter: 进度输出格式化器
            transport_factory: 建立连接的函数
            clock: 返回当前Unix时间戳的函数
            output: 进度输出函数（如 print），为None时不输出
        """
        self.config = config
        self.cache_store = cache_store
        self.target_resolver = TargetResolver(dns_resolver)
        self.logger_service = logger_service or LoggerService()
        self.negotiator_service = negotiator_service or ProtocolNegotiatorService()
        self.tls_executor = tls_executor or TLSHandshakeExecutor()
        self.expiry_calculator = expiry_calculator or ExpiryCalculator(
            config.grace_rules, config.default_grace_days
        )
        self.reporter = reporter or ReportFormatter()
        self.error_handler = CheckErrorHandler()
        self.transport_factory = transport_factory
        self.clock = clock
        self.output = output

    def execute(self, specs: List[str], use_cache: bool = True) -> CheckResult:
        """
        检查所有目标

        进程中断（KeyboardInterrupt）不会被捕获，剩余目标不再检查。

        Args:
            specs: 目标描述列表
            use_cache: 是否参与缓存（只有来自配置文件的目标参与）

        Returns:
            CheckResult: 检查结果
        """
        start_time = self.clock()
        result = CheckResult()

        targets = self._expand_targets(specs, result)
        self.logger_service.log_check_start(len(targets))

        for target in targets:
            result.outcomes.append(self._process_target(target, use_cache))

        self.logger_service.log_check_end()
        result.execution_time = self.clock() - start_time
        return result

    def check_target(self, target: Target, now: Optional[float] = None) -> CheckOutcome:
        """
        检查单个目标：建立连接、STARTTLS协商、TLS握手、过期分类

        Args:
            target: 检查目标
            now: 当前时间戳

        Returns:
            CheckOutcome: 正常、即将过期或已过期

        Raises:
            CertMonitorError: 连接、协商或握手失败
        """
        now = self.clock() if now is None else now

        with self.transport_factory(target.host, target.port, self.config.connect_timeout,
                                    self.config.read_timeout) as transport:
            self.negotiator_service.negotiate(transport, target)
            sock = transport.detach()

        certificate = self.tls_executor.fetch_certificate(sock, target)
        return self.expiry_calculator.evaluate(
            target, certificate, datetime.fromtimestamp(now, timezone.utc)
        )

    def _expand_targets(self, specs: List[str], result: CheckResult) -> List[Target]:
        targets = []
        seen = set()

        for spec in specs:
            try:
                expanded = self.target_resolver.expand(spec)
            except CertMonitorError as e:
                error_info = self.error_handler.handle_check_error(spec, e)
                outcome = CheckOutcome.failure(spec, error_info['error_type'], error_info['error_message'])
                self.logger_service.log_outcome(outcome)
                self._emit(self.reporter.format_outcome(outcome))
                result.outcomes.append(outcome)
                continue

            for target in expanded:
                if target.key not in seen:
                    seen.add(target.key)
                    targets.append(target)

        return targets

    def _process_target(self, target: Target, use_cache: bool) -> CheckOutcome:
        now = self.clock()
        caching = use_cache and self.cache_store is not None

        if caching and self.cache_store.is_fresh(target.key, now, self.config.cache_interval):
            outcome = CheckOutcome.skipped(target, self.cache_store.get_last_checked(target.key))
            self.logger_service.log_outcome(outcome)
            self._emit(self.reporter.format_outcome(outcome))
            return outcome

        self._emit(self.reporter.format_progress(target))
        self.logger_service.log_target_start(target)

        try:
            outcome = self.check_target(target, now)
        except Exception as e:
            error_info = self.error_handler.handle_check_error(target.key, e)
            self.logger_service.log_error(target.key, e)
            outcome = CheckOutcome.failure(
                target.key, error_info['error_type'], error_info['error_message'], target
            )
        else:
            # 只有成功的检查才更新缓存
            if caching:
                self.cache_store.record_success(target.key, now)

        self.logger_service.log_outcome(outcome)
        self._emit(self.reporter.format_outcome(outcome))
        return outcome

    def _emit(self, line: str):
        if self.output is not None:
            self.output(line)
