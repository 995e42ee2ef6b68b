import ipaddress
import socket
import struct
import threading
import time

import dns.message
import dns.rdatatype
import dns.rrset
import pytest

from dae.resolver import (
    Ip46,
    SystemDns,
    resolve_ip46,
    resolve_netip,
    resolve_ns,
    resolve_soa,
    url_port,
)

UNUSED_SERVER = "192.0.2.1:53"


def build_reply(wire, records, silent):
    query = dns.message.from_wire(wire)
    question = query.question[0]
    if question.rdtype in silent:
        return None
    response = dns.message.make_response(query)
    for rdtype, texts in records.get((question.name.to_text(), question.rdtype), []):
        response.answer.append(
            dns.rrset.from_text(question.name, 60, "IN", rdtype, *texts)
        )
    return response.to_wire()


class FakeUdpServer:
    def __init__(self, records, silent=()):
        self.records, self.silent = records, set(silent)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.stop = threading.Event()
        self.thread = threading.Thread(target=self.serve, daemon=True)
        self.thread.start()

    @property
    def address(self):
        return f"127.0.0.1:{self.sock.getsockname()[1]}"

    def serve(self):
        while not self.stop.is_set():
            try:
                data, peer = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                return
            reply = build_reply(data, self.records, self.silent)
            if reply is not None:
                self.sock.sendto(reply, peer)

    def close(self):
        self.stop.set()
        self.thread.join()
        self.sock.close()


class FakeTcpServer:
    def __init__(self, records):
        self.records = records
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen()
        self.sock.settimeout(0.05)
        self.stop = threading.Event()
        self.thread = threading.Thread(target=self.serve, daemon=True)
        self.thread.start()

    @property
    def address(self):
        return f"127.0.0.1:{self.sock.getsockname()[1]}"

    def serve(self):
        while not self.stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with conn:
                conn.settimeout(2)
                (length,) = struct.unpack("!H", conn.recv(2))
                data = b""
                while len(data) < length:
                    data += conn.recv(length - len(data))
                reply = build_reply(data, self.records, set())
                conn.sendall(struct.pack("!H", len(reply)) + reply)

    def close(self):
        self.stop.set()
        self.thread.join()
        self.sock.close()


@pytest.fixture
def udp_server():
    servers = []

    def start(records, silent=()):
        server = FakeUdpServer(records, silent)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


@pytest.fixture
def tcp_server():
    servers = []

    def start(records):
        server = FakeTcpServer(records)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.close()


WWW_RECORDS = {
    ("www.example.com.", dns.rdatatype.A): [
        ("CNAME", ["example.com."]),
        ("A", ["192.0.2.10", "192.0.2.11"]),
    ],
    ("www.example.com.", dns.rdatatype.AAAA): [("AAAA", ["2001:db8::10"])],
}


def test_literal_ipv4_answers_itself():
    assert resolve_netip(UNUSED_SERVER, "198.51.100.7", "A") == [
        ipaddress.ip_address("198.51.100.7")
    ]


def test_literal_ipv6_answers_aaaa():
    assert resolve_netip(UNUSED_SERVER, "2001:db8::5", "AAAA") == [
        ipaddress.ip_address("2001:db8::5")
    ]


@pytest.mark.parametrize("host, qtype", [("2001:db8::5", "A"), ("198.51.100.7", "AAAA")])
def test_literal_of_other_family_has_no_record(host, qtype):
    assert resolve_netip(UNUSED_SERVER, host, qtype) == []


def test_mapped_literal_answers_a():
    assert resolve_netip(UNUSED_SERVER, "::ffff:198.51.100.7", dns.rdatatype.A) == [
        ipaddress.ip_address("::ffff:198.51.100.7")
    ]


def test_udp_lookup_skips_other_types(udp_server):
    server = udp_server(WWW_RECORDS)
    addrs = resolve_netip(server.address, "WWW.Example.com", "A", "udp", timeout=5)
    assert addrs == [ipaddress.ip_address("192.0.2.10"), ipaddress.ip_address("192.0.2.11")]


def test_tcp_lookup(tcp_server):
    server = tcp_server(WWW_RECORDS)
    addrs = resolve_netip(server.address, "www.example.com.", "AAAA", "tcp", timeout=5)
    assert addrs == [ipaddress.ip_address("2001:db8::10")]


def test_resolve_ns(udp_server):
    server = udp_server({
        ("example.com.", dns.rdatatype.NS): [("NS", ["ns1.example.com.", "ns2.example.com."])],
    })
    assert sorted(resolve_ns(server.address, "example.com", timeout=5)) == [
        "ns1.example.com.", "ns2.example.com.",
    ]


def test_resolve_soa(tcp_server):
    server = tcp_server({
        ("example.com.", dns.rdatatype.SOA): [
            ("SOA", ["ns1.example.com. hostmaster.example.com. 1 7200 3600 1209600 300"]),
        ],
    })
    assert resolve_soa(server.address, "example.com", "tcp", timeout=5) == ["ns1.example.com."]


def test_silent_server_times_out(udp_server):
    server = udp_server({}, silent={dns.rdatatype.A})
    with pytest.raises(TimeoutError):
        resolve_netip(server.address, "example.com", "A", "udp", timeout=0.3)


def test_unsupported_network():
    with pytest.raises(ValueError):
        resolve_netip(UNUSED_SERVER, "example.com", "A", "sctp")


def test_ip46_both_families(udp_server):
    server = udp_server(WWW_RECORDS)
    result, err4, err6 = resolve_ip46(server.address, "www.example.com", "udp", False, 5)
    assert result == Ip46(
        ip4=ipaddress.ip_address("192.0.2.10"), ip6=ipaddress.ip_address("2001:db8::10")
    )
    assert (err4, err6) == (None, None)


def test_ip46_race_abandons_slow_lookup(udp_server):
    server = udp_server(WWW_RECORDS, silent={dns.rdatatype.AAAA})
    started = time.monotonic()
    result, err4, err6 = resolve_ip46(server.address, "www.example.com", "udp", True, 5)
    assert time.monotonic() - started < 4
    assert result.ip4 == ipaddress.ip_address("192.0.2.10")
    assert result.ip6 is None
    assert (err4, err6) == (None, None)


def test_ip46_reports_error_without_race(udp_server):
    server = udp_server(WWW_RECORDS, silent={dns.rdatatype.AAAA})
    result, err4, err6 = resolve_ip46(server.address, "www.example.com", "udp", False, 0.5)
    assert result.ip4 == ipaddress.ip_address("192.0.2.10")
    assert result.ip6 is None
    assert err4 is None
    assert isinstance(err6, TimeoutError)


def test_system_dns_skips_loopback(tmp_path):
    conf = tmp_path / "resolv.conf"
    conf.write_text("nameserver 127.0.0.53\nnameserver 192.0.2.1\n")
    assert SystemDns(str(conf)).get() == (ipaddress.ip_address("192.0.2.1"), 53)


def test_system_dns_uses_fallback(tmp_path):
    conf = tmp_path / "resolv.conf"
    conf.write_text("nameserver 127.0.0.1\nnameserver ::1\n")
    system = SystemDns(str(conf), fallback="192.0.2.9:53")
    assert system.get() == (ipaddress.ip_address("192.0.2.9"), 53)


def test_system_dns_update_rate_limited(tmp_path):
    conf = tmp_path / "resolv.conf"
    conf.write_text("nameserver 192.0.2.1\n")
    system = SystemDns(str(conf))
    assert system.try_update_elapse(60) == (ipaddress.ip_address("192.0.2.1"), 53)
    with pytest.raises(RuntimeError):
        system.try_update_elapse(60)


def test_system_dns_try_update_rereads(tmp_path):
    conf = tmp_path / "resolv.conf"
    conf.write_text("nameserver 192.0.2.1\n")
    system = SystemDns(str(conf))
    system.get()
    conf.write_text("nameserver 192.0.2.2\n")
    assert system.try_update() == (ipaddress.ip_address("192.0.2.2"), 53)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("http://example.com", "80"),
        ("https://example.com/path", "443"),
        ("https://example.com:8443/x", "8443"),
        ("ftp://example.com", ""),
        ("http://[::1]:8080", "8080"),
        ("http://[::1]", "80"),
    ],
)
def test_url_port(url, expected):
    assert url_port(url) == expected