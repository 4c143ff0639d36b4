"""
目标解析服务
"""
import logging
from typing import List, Optional

from ..exceptions import ConfigError, TransportError
from ..interfaces import DNSResolverInterface
from ..models import Target

DEFAULT_PORT = 443
MX_PORT = 25


def parse_target(text: str, default_port: int = DEFAULT_PORT) -> Target:
    """
    解析 host[:port][/sni] 格式的目标

    包含冒号的主机（IPv6）必须写成 [addr] 或 [addr]:port。

    Args:
        text: 目标描述
        default_port: 未指定端口时使用的端口

    Returns:
        Target: 检查目标

    Raises:
        ConfigError: 格式无效
    """
    text = text.strip()
    address, slash, sni = text.partition('/')
    if slash and not sni:
        raise ConfigError(f"目标 {text!r} 的SNI为空")

    if address.startswith('['):
        end = address.find(']')
        if end < 0:
            raise ConfigError(f"目标 {text!r} 缺少 ']'")
        host, rest = address[1:end], address[end + 1:]
        if rest and not rest.startswith(':'):
            raise ConfigError(f"目标 {text!r} 的 ']' 后只能跟端口")
        port_text = rest[1:] if rest else None
    elif address.count(':') > 1:
        raise ConfigError(f"IPv6地址必须使用方括号: {text!r}")
    else:
        host, colon, port_text = address.partition(':')
        if not colon:
            port_text = None

    if not host:
        raise ConfigError(f"目标 {text!r} 缺少主机名")

    port = default_port if port_text is None else _parse_port(port_text, text)
    return Target(host, port, sni or None)


def format_target(target: Target) -> str:
    """格式化为 host:port[/sni]，parse_target 的逆操作"""
    return target.key


def _parse_port(port_text: str, text: str) -> int:
    if not port_text.isdigit():
        raise ConfigError(f"目标 {text!r} 的端口无效: {port_text!r}")
    port = int(port_text)
    if not 0 < port < 65536:
        raise ConfigError(f"目标 {text!r} 的端口超出范围: {port}")
    return port


class TargetResolver:
    """目标解析器，负责展开 MX: 和 SRV: 伪目标"""

    def __init__(self, dns_resolver: Optional[DNSResolverInterface] = None,
                 default_port: int = DEFAULT_PORT):
        """
        初始化目标解析器

        Args:
            dns_resolver: DNS解析服务，展开MX/SRV时需要
            default_port: 默认端口
        """
        self.dns_resolver = dns_resolver
        self.default_port = default_port
        self.logger = logging.getLogger(__name__)

    def expand(self, spec: str) -> List[Target]:
        """
        将目标描述展开为目标列表

        Args:
            spec: host[:port][/sni]、MX:<domain> 或 SRV:<name>[/sni]

        Returns:
            List[Target]: 按解析顺序排列的目标

        Raises:
            ConfigError: 格式无效
            TransportError: DNS解析失败
        """
        prefix, colon, rest = spec.partition(':')
        kind = prefix.upper() if colon else ''

        if kind == 'MX':
            domain = rest.strip()
            if not domain or '/' in domain:
                raise ConfigError(f"MX目标格式无效: {spec!r}")
            hosts = self._resolver().resolve_mx(domain)
            self.logger.info(f"{spec} 解析出 {len(hosts)} 个MX主机")
            return [Target(host, port) for host, port in hosts]

        if kind == 'SRV':
            name, slash, sni = rest.strip().partition('/')
            if not name or (slash and not sni):
                raise ConfigError(f"SRV目标格式无效: {spec!r}")
            records = self._resolver().resolve_srv(name)
            self.logger.info(f"{spec} 解析出 {len(records)} 条SRV记录")
            return [Target(host, port, sni or None) for host, port in records]

        return [parse_target(spec, self.default_port)]

    def _resolver(self) -> DNSResolverInterface:
        if self.dns_resolver is None:
            raise TransportError("未配置DNS解析服务，无法展开MX/SRV目标")
        return self.dns_resolver
