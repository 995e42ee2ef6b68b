# dae

Building blocks and control commands for a transparent proxy running on Linux.

## Modules

- `dae.consts`: dial modes (`parse_dial_mode`), outbound indices
  (`OutboundIndex`, `DnsRequestOutboundIndex`, `DnsResponseOutboundIndex`),
  match types, routing domain keys, reload states (`ReloadState`) and the other
  enumerations and constants shared by routing and DNS code.
- `dae.bitlist`: `CompactBitList`, a list of unsigned integers packed at any
  bit width, with `set`, `get`, `append` and `tighten`.
- `dae.utils`: base64 decoding with lenient padding (`base64_std_decode`,
  `base64_url_decode`), MAC and port-range parsing, Go-style duration parsing
  (`parse_duration`), dotted-key setting in dicts and dataclasses, fuzzy value
  decoding (`fuzzy_decode`), address helpers, `htons`/`ntohs`, AES-GCM
  construction and certificate chain hashing.
- `dae.fuzzy_json`: `fuzzy_bool`, which turns decoded JSON numbers, strings,
  booleans and null into a bool.
- `dae.dnsconfig`: `read_dns_config` reads a resolv.conf file into a
  `DnsConfig`.
- `dae.resolver`: `SystemDns`, the first non-loopback name server of
  `/etc/resolv.conf` refreshed lazily, and direct lookups over UDP or TCP:
  `resolve_netip`, `resolve_ip46`, `resolve_ns`, `resolve_soa`; also
  `url_port`.
- `dae.subscription`: `resolve_subscription` fetches node subscriptions over
  HTTP(S) or from `file://` paths under a config directory, keeps copies of
  `http-file://`/`https-file://` subscriptions in `persist.d`, and decodes
  SIP008 or base64 node lists.
- `dae.assets`: `LocationFinder`, which looks up data files such as geo
  databases in `$DAE_LOCATION_ASSET`, the given directories and the XDG data
  directories, caching hits for five seconds.
- `dae.upstream`: parses DNS upstream URLs (`udp://`, `tcp://`, `tcp+udp://`,
  `tls://`, `quic://`, `https://`, `h3://`) with `parse_raw_upstream`, resolves
  them with `new_upstream`, and initialises them on first use with
  `UpstreamResolver`.
- `dae.privilege`: `auto_su` re-runs the current command as root through
  sudo, doas, run0 or pkexec.
- `dae.sysdump`: `dump_network_info` collects routing, interface, sysctl,
  nftables and iptables state into a `dae-sysdump.<time>.tar.gz` archive for
  bug reports.
- `dae.cli`: the `dae` command.

## Installation

```
pip install .
```

For the test suite:

```
pip install .[test]
pytest
```

## Command line

The `dae` command controls an instance that is already running:

```
dae reload [pid]      # ask the instance to reload its configuration
dae reload --abort    # the same, also asking it to abort established connections
dae suspend [pid]     # put the instance into a no-load state
dae honk              # ring the terminal bell
dae --version
```

Without a pid, `reload` and `suspend` read it from `/var/run/dae.pid`.
When not run as root, both re-run themselves through sudo, doas, run0 or
pkexec. `reload` sends `SIGUSR1`, then follows the progress file
`/var/run/dae.progress` and prints the result the instance reports; `suspend`
sends `SIGUSR2`. With `--abort` the file `/var/run/dae.abort` is created first.

## Library examples

```python
from dae.upstream import parse_raw_upstream

parsed = parse_raw_upstream("https://dns.example.com")
print(parsed.scheme.value, parsed.port, parsed.path)   # https 443 /dns-query

from dae.utils import parse_port_range
print(parse_port_range("8000-9000"))                   # (8000, 9000)

from dae.bitlist import CompactBitList
bits = CompactBitList(6)
bits.set(1, 0b110010)
print(bits.get(1))                                     # 50

from dae.sysdump import dump_network_info
dump_network_info("sysdump.tar.gz")                    # writes the archive
```

## What this package does not do

The package does not run the proxy itself: there is no command to start an
instance in the foreground, and no reading or validation of a proxy
configuration file. Routing rules, DNS request and response matching and
packet handling are not included; `reload` and `suspend` only signal an
instance that something else has started. System dumps are available through
`dae.sysdump` in Python, not as a `dae` subcommand.