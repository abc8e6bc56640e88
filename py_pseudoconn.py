#!/usr/bin/env python3
""" tool for writing synthetic client/server conversations to pcap
    1) pip3 install scapy
    2) py_pseudoconn.py --scenario http --seed 7 file_to_store.pcap
    3) wireshark file_to_store.pcap """

import argparse
import logging
import sys

from capture_session import DEFAULT_DELAY, CaptureSession
from pseudo_conn import PseudoConnError
from pseudo_dns import PTR, TXT, send_dns_answer, send_dns_query
from pseudo_http import http_transaction
from pseudo_stream import InjectionSession

logger = logging.getLogger("pseudoconn")


def scenario_basic(session, transport="tcp", **defaults):
    """Two short conversations, one closed through the context manager."""
    with session.connection(dst_ip="1.2.3.4", transport=transport, **defaults) as conn:
        conn.client("Hello")
        conn.server("Yes?")
        conn.client("Never mind")

    conn = session.connection(dst_port=1234, transport=transport, **defaults)
    conn.client("Actually, are you still there?")
    conn.server("Yes?  What??")
    conn.client("If you're going to be impatient, forget it.")
    conn.close()


def scenario_http(session, **defaults):
    with session.connection(dst_port=80, **defaults) as conn:
        http_transaction(
            conn,
            request={"resource": "/bad.sh", "headers": {"Fake-Header": "Fake Value"}},
            response={"body": ["#!/bin/sh\n\n", "echo pwned\n"]},
        )
        conn.insert_delay(0.5)
        http_transaction(
            conn,
            request={"resource": "/index.html"},
            response={"body": "<html>compressed</html>", "content_encoding": "gzip"},
        )


def scenario_dns(session, **defaults):
    send_dns_query(session, "www.example.com", **defaults)
    send_dns_answer(session, "www.fake.com", "1.2.3.4", **defaults)
    send_dns_answer(
        session,
        "5.4.3.2.IN-ADDR.ARPA",
        [
            "second.fake.com",
            ("this is information for a TXT record", TXT),
            ("this TXT record contains a short TTL", TXT, 2),
        ],
        PTR,
        **defaults,
    )


def _reset_http(session, **defaults):
    tcp = session.connection(src_ip="1.2.3.4", dst_ip="21.31.41.51", **defaults)
    tcp.client("GET /file1 HTTP/1.0\r\nHost: Server1\r\n\r\n")
    tcp.server("HTTP/1.0 200 Okie Dokie\r\nContent-Le")
    tcp.reset()


def _reset_rfb(session, **defaults):
    tcp = session.connection(src_ip="4.3.2.1", dst_ip="21.31.41.51", **defaults)
    tcp.server("RFB 003.008\n")
    tcp.client("RFB 003.008\x00")
    tcp.server("\x02\x02\x10")
    tcp.client("\x02")
    tcp.server("\x0e32\xda\x9f\xf1]\xe0\xc7$\xac\x1a\xd3\xab;\xc3")
    tcp.reset()


def scenario_reset(session, **defaults):
    """Two TCP conversations cut short by RST."""
    _reset_http(session, **defaults)
    _reset_rfb(session, **defaults)


def scenario_syslog(session, **defaults):
    """The reset conversations interleaved with syslog datagrams about them."""
    _reset_http(session, **defaults)
    syslog = session.connection(
        dst_port=514, src_ip="10.0.0.5", dst_ip="10.0.0.34", transport="udp", **defaults
    )
    syslog.client("<128>HTTP connection was reset")
    _reset_rfb(session, **defaults)
    syslog.client("<32>RFB connection was reset")


SCENARIOS = {
    "basic": scenario_basic,
    "http": scenario_http,
    "dns": scenario_dns,
    "reset": scenario_reset,
    "syslog": scenario_syslog,
}


def build_parser():
    parser = argparse.ArgumentParser(description='Write a synthetic client/server conversation to PCAP')
    parser.add_argument('pcap_filename', nargs='?')
    parser.add_argument('--scenario', choices=sorted(SCENARIOS), default='basic')
    parser.add_argument('--seed', type=int, default=0, help='Seed for generated ports, MACs and ids')
    parser.add_argument('--timestamp', type=float, default=None, help='Capture start, seconds since the epoch')
    parser.add_argument('--delay', type=float, default=DEFAULT_DELAY, help='Seconds between frames')
    parser.add_argument('--transport', choices=('tcp', 'udp'), default='tcp', help='Transport for the basic scenario')
    parser.add_argument('--mtu', type=int, default=None)
    parser.add_argument('--ipv6', action='store_true', default=False, help='Carry every connection over IPv6')
    parser.add_argument('--vlan', type=int, action='append', default=[], help='VLAN tag, outermost first')
    parser.add_argument('--flag-policy', choices=('repeat', 'edges'), default=None,
                        help='Control flags on every segment (repeat) or only the first/last (edges)')
    parser.add_argument('--inject', metavar='IFACE', default=None,
                        help='Send frames out of IFACE instead of writing a capture')
    parser.add_argument('-v', '--verbose', action='count', default=0)
    return parser


def connection_defaults(args):
    defaults = {}
    if args.mtu is not None:
        defaults['mtu'] = args.mtu
    if args.ipv6:
        defaults['ip_version'] = 6
    if args.vlan:
        defaults['vlan'] = tuple(args.vlan)
    if args.flag_policy:
        defaults['flag_policy'] = args.flag_policy
    return defaults


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.pcap_filename and not args.inject:
        parser.error('a pcap filename is required unless --inject is given')

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')

    scenario = SCENARIOS[args.scenario]
    defaults = connection_defaults(args)
    if args.scenario == 'basic':
        defaults['transport'] = args.transport

    try:
        if args.inject:
            with InjectionSession(args.inject, seed=args.seed) as session:
                scenario(session, **defaults)
            return 0
        session = CaptureSession(args.timestamp, args.delay, seed=args.seed)
        scenario(session, **defaults)
    except PseudoConnError as exc:
        parser.error(str(exc))

    session.write_pcap(args.pcap_filename)
    logger.info('%s scenario: %d frames', args.scenario, session.frame_count)
    return 0


if __name__ == '__main__':
    sys.exit(main())
