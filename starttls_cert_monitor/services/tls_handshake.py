"""
TLS握手服务
"""
import ssl
import socket
import logging
from typing import List

from cryptography import x509

from ..exceptions import TLSError
from ..models import CertificateSummary, Target


def parse_certificate(der: bytes) -> CertificateSummary:
    """
    解析DER格式的叶子证书

    Args:
        der: DER编码的证书

    Returns:
        CertificateSummary: 证书摘要，DN使用RFC2253/RFC4514格式

    Raises:
        TLSError: 证书无法解析
    """
    try:
        certificate = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise TLSError(f"无法解析证书: {e}") from e

    return CertificateSummary(
        subject=certificate.subject.rfc4514_string(),
        issuer=certificate.issuer.rfc4514_string(),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        subject_alt_names=_subject_alt_names(certificate),
    )


def _subject_alt_names(certificate: x509.Certificate) -> List[str]:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []

    names = extension.value.get_values_for_type(x509.DNSName)
    names.extend(str(ip) for ip in extension.value.get_values_for_type(x509.IPAddress))
    return names


class TLSHandshakeExecutor:
    """在协商完成的连接上执行TLS握手并取回叶子证书"""

    def __init__(self,
                 minimum_version: ssl.TLSVersion = ssl.TLSVersion.MINIMUM_SUPPORTED,
                 maximum_version: ssl.TLSVersion = ssl.TLSVersion.MAXIMUM_SUPPORTED,
                 security_level: int = 0):
        """
        初始化TLS握手执行器

        为了能检查老旧服务器上的证书，默认允许最低协议版本并使用
        SECLEVEL=0（接受较弱的DH参数）。不做证书链校验。

        Args:
            minimum_version: 最低TLS版本
            maximum_version: 最高TLS版本
            security_level: OpenSSL安全级别
        """
        self.minimum_version = minimum_version
        self.maximum_version = maximum_version
        self.security_level = security_level
        self.logger = logging.getLogger(__name__)

    def create_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        context.minimum_version = self.minimum_version
        context.maximum_version = self.maximum_version
        context.set_ciphers(f"DEFAULT:@SECLEVEL={self.security_level}")
        return context

    def fetch_certificate(self, sock: socket.socket, target: Target) -> CertificateSummary:
        """
        完成TLS握手并返回叶子证书摘要，无论成功与否都会关闭连接

        Args:
            sock: 已完成协议协商的套接字
            target: 检查目标，SNI始终发送（未配置时使用主机名）

        Returns:
            CertificateSummary: 证书摘要

        Raises:
            TLSError: 握手失败或未获取到证书
        """
        server_name = target.server_name
        try:
            context = self.create_context()
            with context.wrap_socket(sock, server_hostname=server_name) as tls_sock:
                self.logger.debug(f"{target} TLS握手完成，协议 {tls_sock.version()}")
                der = tls_sock.getpeercert(binary_form=True)
        except ssl.SSLError as e:
            raise TLSError(f"{target} TLS握手失败: {e}") from e
        except OSError as e:
            raise TLSError(f"{target} TLS握手时连接错误: {e}") from e
        finally:
            sock.close()

        if not der:
            raise TLSError(f"{target} 未返回证书")

        return parse_certificate(der)
