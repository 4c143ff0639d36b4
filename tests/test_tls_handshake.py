"""
TLS握手服务测试
"""
import ssl
import ipaddress
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock, patch
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from starttls_cert_monitor.exceptions import TLSError
from starttls_cert_monitor.models import Target
from starttls_cert_monitor.services.tls_handshake import TLSHandshakeExecutor, parse_certificate


def make_certificate(not_before: datetime, not_after: datetime, with_san: bool = True) -> bytes:
    """生成自签名测试证书（DER）"""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "mail.example.com")])
    issuer = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Let's Encrypt"),
        x509.NameAttribute(NameOID.COMMON_NAME, "R3"),
    ])

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if with_san:
        builder = builder.add_extension(x509.SubjectAlternativeName([
            x509.DNSName("mail.example.com"),
            x509.DNSName("smtp.example.com"),
            x509.IPAddress(ipaddress.ip_address("192.0.2.10")),
        ]), critical=False)

    certificate = builder.sign(key, hashes.SHA256())
    return certificate.public_bytes(serialization.Encoding.DER)


class TestParseCertificate:
    """证书解析测试"""

    def setup_method(self):
        self.not_before = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.not_after = datetime(2024, 3, 31, 12, 0, 0, tzinfo=timezone.utc)

    def test_parse_fields(self):
        """测试主题、颁发者和有效期"""
        summary = parse_certificate(make_certificate(self.not_before, self.not_after))

        assert summary.subject == "CN=mail.example.com"
        assert summary.issuer == "CN=R3,O=Let's Encrypt,C=US"
        assert summary.not_before == self.not_before
        assert summary.not_after == self.not_after
        assert summary.not_after.tzinfo is not None

    def test_parse_subject_alt_names(self):
        """测试SAN包含DNS名称和IP地址"""
        summary = parse_certificate(make_certificate(self.not_before, self.not_after))

        assert summary.subject_alt_names == ["mail.example.com", "smtp.example.com", "192.0.2.10"]

    def test_parse_without_san(self):
        """测试没有SAN扩展"""
        summary = parse_certificate(make_certificate(self.not_before, self.not_after, with_san=False))

        assert summary.subject_alt_names == []

    def test_parse_invalid(self):
        """测试无法解析的数据"""
        with pytest.raises(TLSError, match="无法解析证书"):
            parse_certificate(b"not a certificate")


class TestTLSHandshakeExecutor:
    """TLS握手执行器测试"""

    def setup_method(self):
        self.executor = TLSHandshakeExecutor()
        now = datetime.now(timezone.utc).replace(microsecond=0)
        self.der = make_certificate(now - timedelta(days=10), now + timedelta(days=80))

    def _mock_context(self, der=None, error=None):
        context = MagicMock()
        if error is not None:
            context.wrap_socket.side_effect = error
        else:
            tls_sock = context.wrap_socket.return_value.__enter__.return_value
            tls_sock.version.return_value = "TLSv1.3"
            tls_sock.getpeercert.return_value = der
        return context

    def test_create_context(self):
        """测试不校验证书链和主机名"""
        context = self.executor.create_context()

        assert isinstance(context, ssl.SSLContext)
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE

    @patch.object(ssl.SSLContext, 'set_ciphers')
    def test_create_context_accepts_legacy_servers(self, mock_set_ciphers):
        """测试默认允许所有协议版本并使用SECLEVEL=0"""
        context = self.executor.create_context()

        assert context.minimum_version == ssl.TLSVersion.MINIMUM_SUPPORTED
        assert context.maximum_version == ssl.TLSVersion.MAXIMUM_SUPPORTED
        mock_set_ciphers.assert_called_once_with("DEFAULT:@SECLEVEL=0")

    @patch.object(ssl.SSLContext, 'set_ciphers')
    def test_create_context_custom_policy(self, mock_set_ciphers):
        """测试构造参数传递到SSL上下文"""
        executor = TLSHandshakeExecutor(minimum_version=ssl.TLSVersion.TLSv1_2, security_level=2)

        context = executor.create_context()

        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        mock_set_ciphers.assert_called_once_with("DEFAULT:@SECLEVEL=2")

    def test_fetch_certificate(self):
        """测试握手成功并返回证书摘要"""
        context = self._mock_context(self.der)
        sock = MagicMock()

        with patch.object(self.executor, 'create_context', return_value=context):
            summary = self.executor.fetch_certificate(sock, Target("mail.example.com", 465))

        assert summary.subject == "CN=mail.example.com"
        context.wrap_socket.assert_called_once_with(sock, server_hostname="mail.example.com")
        tls_sock = context.wrap_socket.return_value.__enter__.return_value
        tls_sock.getpeercert.assert_called_once_with(binary_form=True)
        sock.close.assert_called_once()

    def test_fetch_certificate_uses_sni(self):
        """测试配置了SNI时发送SNI而不是主机"""
        context = self._mock_context(self.der)

        with patch.object(self.executor, 'create_context', return_value=context):
            self.executor.fetch_certificate(MagicMock(), Target("192.0.2.10", 443, "www.example.com"))

        assert context.wrap_socket.call_args.kwargs['server_hostname'] == "www.example.com"

    def test_handshake_failure(self):
        """测试握手失败时关闭连接"""
        context = self._mock_context(error=ssl.SSLError(1, "handshake failure"))
        sock = MagicMock()

        with patch.object(self.executor, 'create_context', return_value=context):
            with pytest.raises(TLSError, match="TLS握手失败"):
                self.executor.fetch_certificate(sock, Target("example.com", 443))

        sock.close.assert_called_once()

    def test_connection_reset(self):
        """测试握手时连接被重置"""
        context = self._mock_context(error=ConnectionResetError(104, "Connection reset by peer"))

        with patch.object(self.executor, 'create_context', return_value=context):
            with pytest.raises(TLSError, match="连接错误"):
                self.executor.fetch_certificate(MagicMock(), Target("example.com", 443))

    def test_no_certificate(self):
        """测试服务器未返回证书"""
        context = self._mock_context(None)

        with patch.object(self.executor, 'create_context', return_value=context):
            with pytest.raises(TLSError, match="未返回证书"):
                self.executor.fetch_certificate(MagicMock(), Target("example.com", 443))
