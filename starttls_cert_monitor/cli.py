"""
命令行入口
"""
import sys
import argparse
import logging
from typing import List, Optional

from .exceptions import ConfigError
from .models import MonitorConfig
from .monitor import CertificateMonitor
from .services.cache_store import JSONCacheStore
from .services.config_loader import ConfigLoader, default_cache_path
from .services.dns_resolver import DNSResolver
from .services.logger import LoggerService
from .services.report import ReportFormatter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="starttls-cert-monitor",
        description="检查TLS/STARTTLS服务证书是否即将过期",
        epilog="目标格式: host[:port][/sni]、MX:<domain>、SRV:<name>[/sni]，默认端口443。"
               "未指定目标时检查配置文件中的所有 check 指令并使用缓存。",
    )
    parser.add_argument('targets', nargs='*', help="要检查的目标")
    parser.add_argument('-c', '--config', help="配置文件路径（默认 $CERT_MONITOR_CONFIG 或 /etc/starttls-cert-monitor.conf）")
    parser.add_argument('--cache-file', help="缓存文件路径")
    parser.add_argument('--no-cache', action='store_true', help="不读取也不更新缓存")
    parser.add_argument('--timeout', type=float, help="连接超时时间（秒，默认3）")
    parser.add_argument('--read-timeout', type=float, help="读取超时时间（秒，默认不限制）")
    parser.add_argument('--grace', type=int, help="默认宽限天数（默认28）")
    parser.add_argument('--syslog', action='store_true', help="同时输出日志到syslog")
    parser.add_argument('--log-level', help="日志级别（默认 $LOG_LEVEL 或 INFO）")
    parser.add_argument('-v', '--verbose', action='store_true', help="报告中包含正常证书的详细信息")
    return parser


def load_config(args: argparse.Namespace) -> MonitorConfig:
    """
    加载配置并应用命令行覆盖项

    只指定了命令行目标且未显式给出配置文件时，配置文件可以不存在。

    Raises:
        ConfigError: 配置文件无法读取或格式错误
    """
    loader = ConfigLoader(args.config)
    if args.targets and args.config is None and not loader.exists():
        config = MonitorConfig(cache_file=default_cache_path())
    else:
        config = loader.load()

    if args.cache_file:
        config.cache_file = args.cache_file
    if args.timeout is not None:
        config.connect_timeout = args.timeout
    if args.read_timeout is not None:
        config.read_timeout = args.read_timeout
    if args.grace is not None:
        config.default_grace_days = args.grace
    if args.syslog:
        config.syslog = True
    if args.log_level:
        config.log_level = args.log_level
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """
    命令行主函数

    Returns:
        int: 0 表示没有失败且没有即将过期的证书，1 表示存在问题，
             2 表示启动错误，130 表示被中断
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 2

    logger_service = LoggerService(log_level=config.log_level, use_syslog=config.syslog)
    logger = logger_service.logger

    # 命令行指定的目标不参与缓存
    use_cache = not args.targets and not args.no_cache
    specs = args.targets or config.target_specs()
    if not specs:
        logger.warning("没有要检查的目标")

    cache_store = None
    if use_cache:
        cache_store = JSONCacheStore(config.cache_file or default_cache_path())
        try:
            cache_store.load()
        except ConfigError as e:
            print(f"缓存错误: {e}", file=sys.stderr)
            return 2

    reporter = ReportFormatter(verbose=args.verbose)
    monitor = CertificateMonitor(
        config,
        cache_store=cache_store,
        dns_resolver=DNSResolver(),
        logger_service=logger_service,
        reporter=reporter,
        output=print,
    )

    try:
        result = monitor.execute(specs, use_cache=use_cache)
    except KeyboardInterrupt:
        logger.warning("检查被中断，剩余目标未检查")
        return 130
    finally:
        # 已完成目标的缓存更新在中断时同样保存
        if cache_store is not None:
            _save_cache(cache_store, logger)

    logger.info(monitor.expiry_calculator.get_expiry_summary(result.outcomes))
    print(reporter.format_summary(result))
    return result.exit_code


def _save_cache(cache_store: JSONCacheStore, logger: logging.Logger):
    try:
        cache_store.save()
    except ConfigError as e:
        logger.error(f"缓存未保存: {e}")


if __name__ == '__main__':
    sys.exit(main())
