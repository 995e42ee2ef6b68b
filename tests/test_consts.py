import ipaddress
import socket

import pytest

from dae.consts import (
    MAX_MATCH_SET_LEN,
    DialMode,
    DnsRequestOutboundIndex,
    DnsResponseOutboundIndex,
    IpVersionStr,
    IpVersionType,
    L4ProtoStr,
    L4ProtoType,
    MatchType,
    OutboundIndex,
    ParamKey,
    ReloadState,
    check_max_match_set_len,
    ip_version_from_addr,
    parse_dial_mode,
)


@pytest.mark.parametrize("mode", ["ip", "domain", "domain+", "domain++"])
def test_parse_dial_mode_round_trip(mode):
    assert parse_dial_mode(mode).value == mode


def test_parse_dial_mode_rejects_unknown():
    with pytest.raises(ValueError, match="unsupported dial mode: bogus"):
        parse_dial_mode("bogus")


def test_parse_dial_mode_domain_plus():
    assert parse_dial_mode("domain+") is DialMode.DOMAIN_PLUS


def test_l4_proto_tcp():
    assert L4ProtoStr.TCP.to_l4_proto() == socket.IPPROTO_TCP


def test_l4_proto_type():
    assert L4ProtoStr.TCP.to_l4_proto_type() is L4ProtoType.TCP
    assert L4ProtoStr.UDP.to_l4_proto_type() is L4ProtoType.UDP


@pytest.mark.parametrize("addr, digit", [("192.0.2.1", "4"), ("2001:db8::1", "6")])
def test_ip_version_round_trip(addr, digit):
    version = ip_version_from_addr(addr)
    assert version.value == digit
    assert version.to_ip_version_type().to_ip_version_str() is version
    assert str(version.to_ip_version()) == digit


def test_ip_version_x_has_no_string():
    with pytest.raises(ValueError):
        IpVersionType.X.to_ip_version_str()


@pytest.mark.parametrize(
    "addr, expected",
    [
        ("192.0.2.1", IpVersionStr.V4),
        ("::ffff:192.0.2.1", IpVersionStr.V4),
        ("2001:db8::1", IpVersionStr.V6),
        (ipaddress.ip_address("::1"), IpVersionStr.V6),
        (ipaddress.ip_address("127.0.0.1"), IpVersionStr.V4),
    ],
)
def test_ip_version_from_addr(addr, expected):
    assert ip_version_from_addr(addr) is expected


def test_ip_version_from_invalid_addr():
    with pytest.raises(ValueError):
        ip_version_from_addr("not-an-address")


def test_outbound_index_names():
    assert str(OutboundIndex.DIRECT) == "direct"
    assert str(OutboundIndex.BLOCK) == "block"
    assert str(OutboundIndex.MUST_RULES) == "must_rules"
    assert str(OutboundIndex.CONTROL_PLANE_ROUTING) == "<Control Plane Routing>"
    assert str(OutboundIndex.LOGICAL_OR) == "<OR>"
    assert str(OutboundIndex.LOGICAL_AND) == "<AND>"
    assert str(OutboundIndex(5)) == "<index: 5>"


def test_outbound_index_reserved():
    assert OutboundIndex.DIRECT.is_reserved()
    assert OutboundIndex.LOGICAL_AND.is_reserved()
    assert not OutboundIndex.USER_DEFINED_MIN.is_reserved()
    assert not OutboundIndex.USER_DEFINED_MAX.is_reserved()
    assert OutboundIndex.LOGICAL_MASK == OutboundIndex.LOGICAL_OR


def test_outbound_index_out_of_range():
    with pytest.raises(ValueError):
        OutboundIndex(0x100)
    with pytest.raises(ValueError):
        OutboundIndex(-1)


def test_dns_request_index_names():
    assert str(DnsRequestOutboundIndex.REJECT) == "reject"
    assert str(DnsRequestOutboundIndex.AS_IS) == "asis"
    assert str(DnsRequestOutboundIndex.LOGICAL_OR) == "<OR>"
    assert str(DnsRequestOutboundIndex(3)) == "<index: 3>"
    assert DnsRequestOutboundIndex.USER_DEFINED_MAX < DnsRequestOutboundIndex.REJECT


def test_dns_response_index():
    assert str(DnsResponseOutboundIndex.ACCEPT) == "accept"
    assert str(DnsResponseOutboundIndex.REJECT) == "reject"
    assert DnsResponseOutboundIndex.ACCEPT.is_reserved()
    assert DnsResponseOutboundIndex.LOGICAL_AND.is_reserved()
    assert not DnsResponseOutboundIndex(0).is_reserved()
    assert not DnsResponseOutboundIndex.USER_DEFINED_MAX.is_reserved()


def test_logical_mask_identifies_logical_indices():
    mask = OutboundIndex(0xFE)
    assert mask == OutboundIndex.LOGICAL_MASK
    assert int(OutboundIndex(0xFE)) & int(mask) == int(mask)
    assert int(OutboundIndex(0xFF)) & int(mask) == int(mask)
    assert int(OutboundIndex(0xFC)) & int(mask) != int(mask)


def test_param_key_alias():
    assert ParamKey(1) is ParamKey.ONE_KEY
    assert ParamKey(1) is ParamKey.BIG_ENDIAN_TPROXY_PORT_KEY


def test_match_type_order():
    assert MatchType(10) is MatchType.FALLBACK
    assert MatchType(12) is MatchType.UPSTREAM
    assert MatchType(13) is MatchType.QTYPE
    assert MatchType(10) < MatchType(12) < MatchType(13)


def test_reload_state_order():
    assert ReloadState("0") is ReloadState.SEND
    assert ReloadState("0").value < ReloadState("1").value < ReloadState("2").value
    assert ReloadState.SEND.value == "0"


def test_check_max_match_set_len():
    assert check_max_match_set_len(None) == MAX_MATCH_SET_LEN
    assert check_max_match_set_len("") == MAX_MATCH_SET_LEN
    assert check_max_match_set_len("64") == 64
    assert MAX_MATCH_SET_LEN % 32 == 0


def test_check_max_match_set_len_errors():
    with pytest.raises(ValueError, match="multiple of 32"):
        check_max_match_set_len("100")
    with pytest.raises(ValueError):
        check_max_match_set_len("abc")