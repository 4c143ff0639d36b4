"""
传输层测试
"""
import socket
import pytest
from unittest.mock import MagicMock, patch

from starttls_cert_monitor.exceptions import TransportError
from starttls_cert_monitor.services.transport import Transport


class ChunkedSocket:
    """按顺序返回预设数据块的套接字"""

    def __init__(self, *chunks):
        self.chunks = list(chunks)
        self.sent = b""
        self.closed = False

    def recv(self, size):
        if not self.chunks:
            return b""
        chunk = self.chunks.pop(0)
        if isinstance(chunk, Exception):
            raise chunk
        return chunk[:size]

    def sendall(self, data):
        self.sent += data

    def close(self):
        self.closed = True


class TestTransport:
    """传输层测试类"""

    def test_read_line_across_chunks(self):
        """测试跨数据块读取行"""
        transport = Transport(ChunkedSocket(b"220 mail.exa", b"mple.com\r\n250 ok\r\n"), "mail.example.com", 25)

        assert transport.read_line() == "220 mail.example.com"
        assert transport.read_line() == "250 ok"

    def test_read_line_accepts_bare_lf(self):
        """测试只有LF的行结束符"""
        transport = Transport(ChunkedSocket(b"+OK ready\n"))

        assert transport.read_line() == "+OK ready"

    def test_read_line_eof(self):
        """测试行结束前连接关闭"""
        transport = Transport(ChunkedSocket(b"220 partial"), "example.com", 25)

        with pytest.raises(TransportError, match="example.com:25"):
            transport.read_line()

    def test_read_line_too_long(self):
        """测试没有换行的超长响应"""
        sock = ChunkedSocket(*([b"x" * 4096] * 20))
        transport = Transport(sock, "example.com", 25)

        with pytest.raises(TransportError, match="响应行超过 65536 字节"):
            transport.read_line()

        assert sock.chunks

    def test_read_exact(self):
        """测试读取固定长度"""
        transport = Transport(ChunkedSocket(b"\x01\x02", b"\x03\x04\x05"))

        assert transport.read_exact(4) == b"\x01\x02\x03\x04"
        assert transport.recv(10) == b"\x05"

    def test_read_exact_short(self):
        """测试数据不足"""
        transport = Transport(ChunkedSocket(b"\x01\x02"))

        with pytest.raises(TransportError, match="期望 4 字节"):
            transport.read_exact(4)

    def test_recv_prefers_buffer(self):
        """测试recv优先返回缓冲数据"""
        sock = ChunkedSocket(b"line\r\nrest", b"more")
        transport = Transport(sock)
        transport.read_line()

        assert transport.recv(100) == b"rest"
        assert transport.recv(100) == b"more"

    def test_read_timeout(self):
        """测试读取超时"""
        transport = Transport(ChunkedSocket(socket.timeout("timed out")), "example.com", 143)

        with pytest.raises(TransportError, match="超时"):
            transport.read_line()

    def test_send_line_appends_crlf(self):
        """测试发送行追加CRLF"""
        sock = ChunkedSocket()
        Transport(sock).send_line("EHLO checker")

        assert sock.sent == b"EHLO checker\r\n"

    def test_send_failure(self):
        """测试发送失败"""
        sock = MagicMock()
        sock.sendall.side_effect = BrokenPipeError("broken pipe")

        with pytest.raises(TransportError):
            Transport(sock).send(b"data")

    def test_detach_hands_over_socket(self):
        """测试交出套接字后不再关闭它"""
        sock = ChunkedSocket(b"220 ready\r\nleftover")
        with Transport(sock) as transport:
            transport.read_line()
            detached = transport.detach()

        assert detached is sock
        assert not sock.closed

    def test_context_manager_closes(self):
        """测试上下文退出时关闭连接"""
        sock = ChunkedSocket()
        with Transport(sock):
            pass

        assert sock.closed


class TestTransportConnect:
    """建立连接测试"""

    @patch('starttls_cert_monitor.services.transport.socket.create_connection')
    def test_connect_applies_timeouts(self, mock_create):
        """测试连接超时和读取超时"""
        sock = MagicMock()
        mock_create.return_value = sock

        transport = Transport.connect("example.com", 993, connect_timeout=3.0, read_timeout=10.0)

        mock_create.assert_called_once_with(("example.com", 993), timeout=3.0)
        sock.settimeout.assert_called_once_with(10.0)
        assert transport.sock is sock

    @patch('starttls_cert_monitor.services.transport.socket.create_connection')
    def test_connect_timeout(self, mock_create):
        """测试连接超时"""
        mock_create.side_effect = socket.timeout("timed out")

        with pytest.raises(TransportError, match="超时"):
            Transport.connect("example.com", 443)

    @patch('starttls_cert_monitor.services.transport.socket.create_connection')
    def test_connect_refused(self, mock_create):
        """测试连接被拒绝"""
        mock_create.side_effect = ConnectionRefusedError(111, "Connection refused")

        with pytest.raises(TransportError, match="无法连接 example.com:443"):
            Transport.connect("example.com", 443)
