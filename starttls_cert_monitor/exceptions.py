"""
异常类型定义
"""


class CertMonitorError(Exception):
    """证书监控基础异常"""


class TransportError(CertMonitorError):
    """连接建立或读写失败"""


class ProtocolError(CertMonitorError):
    """STARTTLS协商过程中收到异常响应"""

    def __init__(self, protocol: str, message: str):
        """
        初始化协议错误

        Args:
            protocol: 协议名称，如 "SMTP"
            message: 错误描述
        """
        super().__init__(f"{protocol}: {message}")
        self.protocol = protocol
        self.message = message


class TLSError(CertMonitorError):
    """TLS握手或证书获取失败"""


class ConfigError(CertMonitorError):
    """配置文件或缓存文件无法读取、格式错误"""
