"""
配置加载服务
"""
import os
import shlex
import logging
from typing import Callable, Dict, List, Optional

from ..exceptions import ConfigError
from ..models import CheckDirective, GraceRule, MonitorConfig
from .target_resolver import parse_target

DEFAULT_CONFIG_PATH = "/etc/starttls-cert-monitor.conf"
DEFAULT_CACHE_PATH = "~/.cache/starttls-cert-monitor.json"


class ConfigLoader:
    """
    配置文件加载器

    文件为逐行指令，支持 # 注释和引号::

        check example.com 443 993
        check mail.example.com:25/smtp.example.com
        check MX:example.com
        grace 28
        grace "CN=R3,O=Let's Encrypt,C=US" 14
        grace "/Let's Encrypt/" 14
        cache 86400
        cachefile /var/cache/starttls-cert-monitor.json
        timeout 3
        readtimeout 10
        syslog yes
    """

    def __init__(self, path: Optional[str] = None):
        """
        初始化配置加载器

        Args:
            path: 配置文件路径，为None时读取环境变量 CERT_MONITOR_CONFIG
        """
        self.path = path or os.getenv('CERT_MONITOR_CONFIG', DEFAULT_CONFIG_PATH)
        self.logger = logging.getLogger(__name__)

        self.directives: Dict[str, Callable[[MonitorConfig, List[str], int], None]] = {
            'check': self._parse_check,
            'grace': self._parse_grace,
            'cache': self._parse_cache,
            'cachefile': self._parse_cachefile,
            'timeout': self._parse_timeout,
            'readtimeout': self._parse_read_timeout,
            'syslog': self._parse_syslog,
        }

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> MonitorConfig:
        """
        读取并解析配置文件

        Returns:
            MonitorConfig: 配置

        Raises:
            ConfigError: 文件不存在、无法读取或格式错误
        """
        try:
            with open(self.path, encoding='utf-8') as f:
                text = f.read()
        except FileNotFoundError as e:
            raise ConfigError(f"配置文件不存在: {self.path}") from e
        except OSError as e:
            raise ConfigError(f"无法读取配置文件 {self.path}: {e}") from e

        config = self.parse(text)
        self.logger.info(
            f"已加载配置 {self.path}: {len(config.checks)} 条检查指令, "
            f"{len(config.grace_rules)} 条颁发者规则"
        )
        return config

    def parse(self, text: str) -> MonitorConfig:
        """
        解析配置文本

        Args:
            text: 配置内容

        Returns:
            MonitorConfig: 配置
        """
        config = MonitorConfig(cache_file=default_cache_path())

        for line_no, raw_line in enumerate(text.splitlines(), 1):
            try:
                tokens = shlex.split(raw_line, comments=True)
            except ValueError as e:
                raise self._error(line_no, f"无法解析: {e}") from e
            if not tokens:
                continue

            keyword, args = tokens[0].lower(), tokens[1:]
            handler = self.directives.get(keyword)
            if handler is None:
                raise self._error(line_no, f"未知指令 {tokens[0]!r}")
            try:
                handler(config, args, line_no)
            except ConfigError as e:
                raise self._error(line_no, str(e)) from e

        return config

    def _parse_check(self, config: MonitorConfig, args: List[str], line_no: int):
        if not args:
            raise ConfigError("check 需要目标参数")
        spec, port_args = args[0], args[1:]
        ports = [self._int(p, "端口") for p in port_args]
        for port in ports:
            if not 0 < port < 65536:
                raise ConfigError(f"端口超出范围: {port}")

        kind = spec.partition(':')[0].upper()
        if kind in ('MX', 'SRV'):
            if ports:
                raise ConfigError(f"{kind} 目标不能指定端口")
        else:
            parse_target(spec)

        config.checks.append(CheckDirective(spec, ports, line_no))

    def _parse_grace(self, config: MonitorConfig, args: List[str], line_no: int):
        if len(args) == 1:
            config.default_grace_days = self._int(args[0], "宽限天数")
        elif len(args) == 2:
            config.grace_rules.append(GraceRule.from_pattern(args[0], self._int(args[1], "宽限天数")))
        else:
            raise ConfigError("grace 用法: grace <天数> 或 grace <颁发者> <天数>")

    def _parse_cache(self, config: MonitorConfig, args: List[str], line_no: int):
        self._expect_args('cache', args, 1)
        config.cache_interval = self._int(args[0], "缓存间隔")

    def _parse_cachefile(self, config: MonitorConfig, args: List[str], line_no: int):
        self._expect_args('cachefile', args, 1)
        config.cache_file = os.path.expanduser(args[0])

    def _parse_timeout(self, config: MonitorConfig, args: List[str], line_no: int):
        self._expect_args('timeout', args, 1)
        config.connect_timeout = self._float(args[0], "连接超时")

    def _parse_read_timeout(self, config: MonitorConfig, args: List[str], line_no: int):
        self._expect_args('readtimeout', args, 1)
        config.read_timeout = self._float(args[0], "读取超时")

    def _parse_syslog(self, config: MonitorConfig, args: List[str], line_no: int):
        self._expect_args('syslog', args, 1)
        value = args[0].lower()
        if value not in ('yes', 'no', 'true', 'false', 'on', 'off'):
            raise ConfigError(f"syslog 只能为 yes 或 no: {args[0]!r}")
        config.syslog = value in ('yes', 'true', 'on')

    def _error(self, line_no: int, message: str) -> ConfigError:
        return ConfigError(f"{self.path}:{line_no}: {message}")

    @staticmethod
    def _expect_args(keyword: str, args: List[str], count: int):
        if len(args) != count:
            raise ConfigError(f"{keyword} 需要 {count} 个参数，实际 {len(args)} 个")

    @staticmethod
    def _int(value: str, name: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise ConfigError(f"{name}必须是整数: {value!r}")
        if number < 0:
            raise ConfigError(f"{name}不能为负数: {number}")
        return number

    @staticmethod
    def _float(value: str, name: str) -> float:
        try:
            number = float(value)
        except ValueError:
            raise ConfigError(f"{name}必须是数字: {value!r}")
        if number <= 0:
            raise ConfigError(f"{name}必须大于0: {value}")
        return number


def default_cache_path() -> str:
    """缓存文件默认路径，可通过环境变量 CERT_MONITOR_CACHE 覆盖"""
    return os.path.expanduser(os.getenv('CERT_MONITOR_CACHE', DEFAULT_CACHE_PATH))
