#!/usr/bin/env python3
"""
odata_traffic_report.py

Per-minute, per-client request report for HCMFAB OData traffic in an
access log.

Log line format (fields the report relies on):
    [<DD/Mon/YYYY:HH:MM:SS +ZZZZ>] <client_ip> ... [x-forwarded-for : <ip>, <ip>, ...]

Example:
    [21/Feb/2026:19:48:21 +0100] 10.0.72.1 GET /sap/opu/odata/sap/HCMFAB_LEAVE_REQUEST_SRV/ HTTP/1.1 200 512 [x-forwarded-for : 94.31.115.82, 10.0.72.1]

Design notes:
- Streaming parsing (line-by-line), single pass, counts kept in memory.
- The client IP comes either from the last x-forwarded-for hop
  ("forwarded-for" mode) or from the third whitespace token ("positional").
- Minute keys are compared as raw strings by default, which is not
  chronological across months; --sort chronological parses them.
"""

from __future__ import annotations

import argparse
import ipaddress
import os
import sys
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, TextIO, Tuple


TARGET_PATH = "/sap/opu/odata/sap/HCMFAB"
FORWARDED_FOR_MARKER = "[x-forwarded-for : "
MINUTE_FORMAT = "%d/%b/%Y:%H:%M"

IP_MODES = ("forwarded-for", "positional")
SORT_ORDERS = ("lexical", "chronological")

TIME_COL_WIDTH = 20
IP_COL_WIDTH = 15
COUNT_RULE_WIDTH = 10

Row = Tuple[str, str, int]


class IpParseError(ValueError):
    """Raised in strict positional mode when the client token is not an IP."""

    def __init__(self, token: str, lineno: Optional[int] = None) -> None:
        self.token = token
        self.lineno = lineno
        where = f" at line {lineno}" if lineno is not None else ""
        super().__init__(f"invalid client IP{where}: {token!r}")


@dataclass(frozen=True)
class ExtractOptions:
    """
    How the client IP is derived from a matching line.

    - ip_mode: "forwarded-for" (last hop of the x-forwarded-for block) or
      "positional" (third whitespace-separated token)
    - strict_ip: positional mode only; raise IpParseError instead of
      skipping the line when the token is not a valid address
    """

    ip_mode: str = "forwarded-for"
    strict_ip: bool = False


@dataclass
class MinuteIpStats:
    """
    Aggregations computed during the single pass over the file.

    counts maps (minute, ip) -> number of matching requests. Only keys that
    were recorded at least once are present.
    """

    counts: Counter[Tuple[str, str]] = field(default_factory=Counter)

    lines_read: int = 0
    lines_matched: int = 0
    lines_skipped: int = 0
    lines_undecodable: int = 0

    def record(self, minute: str, ip: str) -> None:
        """Count one request for (minute, ip)."""
        self.counts[(minute, ip)] += 1

    @property
    def total_requests(self) -> int:
        return sum(self.counts.values())


def eprint(*args: object) -> None:
    """
    Print to stderr.

    Args:
        *args: any printable objects.
    """
    print(*args, file=sys.stderr)


def default_log_path() -> Path:
    """
    Default input location: access.log in the user's home directory.

    An unset HOME is treated as an empty string, which resolves to
    /access.log.
    """
    return Path(f"{os.environ.get('HOME', '')}/access.log")


def validate_file_readable(path: Path) -> None:
    """
    Validate that the given path exists, is a file, and is readable.

    Args:
        path: filesystem path

    Raises:
        FileNotFoundError: if it doesn't exist
        IsADirectoryError: if it's not a file
        PermissionError: if unreadable
        OSError: on other open failures
    """
    if not path.exists():
        raise FileNotFoundError(str(path))

    if not path.is_file():
        raise IsADirectoryError(str(path))

    # Try opening to confirm permissions and readability.
    with path.open("rb"):
        pass


def iter_lines(path: Path, stats: Optional[MinuteIpStats] = None) -> Iterator[str]:
    """
    Yield the lines of a file with line endings stripped.

    Lines that are not valid UTF-8 are skipped (and counted on stats when
    given) rather than aborting the read.

    Args:
        path: input log file path
        stats: optional MinuteIpStats receiving the undecodable-line count

    Yields:
        Decoded lines, without trailing newline.

    Raises:
        OSError: if the file can't be opened.
    """
    with path.open("rb") as f:
        for raw in f:
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                if stats is not None:
                    stats.lines_undecodable += 1
                continue
            yield line.rstrip("\r\n")


def matches_target(line: str) -> bool:
    """Return True if the line references the HCMFAB OData services."""
    return TARGET_PATH in line


def extract_minute(line: str) -> Optional[str]:
    """
    Truncate the leading bracketed timestamp to minute resolution.

    "[21/Feb/2026:19:48:21 +0100] ..." -> "21/Feb/2026:19:48"

    The date, hour and minute are taken verbatim; nothing is validated and
    the timezone is dropped.

    Args:
        line: raw log line

    Returns:
        The minute key, or None if the line has no usable timestamp.
    """
    if not line.startswith("["):
        return None

    end = line.find("]")
    if end == -1:
        return None

    parts = line[1:end].split(":")
    if len(parts) < 3:
        return None

    return ":".join(parts[:3])


def extract_forwarded_ip(line: str) -> Optional[str]:
    """
    Return the last hop of the x-forwarded-for block.

    "[x-forwarded-for : 94.31.115.82, 10.0.72.1]" -> "10.0.72.1"

    The proxy appends the address it received the request from, so the
    rightmost entry is the internal-facing client. The value is not checked
    for being a valid address.

    Args:
        line: raw log line

    Returns:
        The trimmed last entry, or None if the block is absent or unclosed.
    """
    start = line.find(FORWARDED_FOR_MARKER)
    if start == -1:
        return None

    start += len(FORWARDED_FOR_MARKER)
    end = line.find("]", start)
    if end == -1:
        return None

    return line[start:end].split(",")[-1].strip()


def extract_positional_ip(line: str, strict: bool = False) -> Optional[str]:
    """
    Return the third whitespace-separated token, parsed as an IP address.

    Args:
        line: raw log line
        strict: raise IpParseError on an invalid token instead of skipping

    Returns:
        The address in canonical form, or None if the line is too short or
        (non-strict) the token is not an address.

    Raises:
        IpParseError: strict mode only, on an invalid token.
    """
    parts = line.split()
    if len(parts) < 3:
        return None

    token = parts[2]
    try:
        return str(ipaddress.ip_address(token))
    except ValueError:
        if strict:
            raise IpParseError(token) from None
        return None


def extract_ip(line: str, options: ExtractOptions) -> Optional[str]:
    if options.ip_mode == "positional":
        return extract_positional_ip(line, strict=options.strict_ip)
    return extract_forwarded_ip(line)


def aggregate(
    lines: Iterable[str],
    options: ExtractOptions = ExtractOptions(),
    *,
    stats: Optional[MinuteIpStats] = None,
    warn: bool = False,
) -> MinuteIpStats:
    """
    Filter, extract and count requests per (minute, client IP).

    Lines that match the target path but miss a field are skipped. If
    warn=True, prints a warning for each of them to stderr.

    Args:
        lines: log lines
        options: ExtractOptions
        stats: existing MinuteIpStats to fill (a new one by default)
        warn: whether to print warnings for skipped lines

    Returns:
        MinuteIpStats with the aggregated counts.

    Raises:
        IpParseError: strict positional mode, with lineno set.
    """
    if stats is None:
        stats = MinuteIpStats()

    for lineno, line in enumerate(lines, start=1):
        stats.lines_read += 1

        if not matches_target(line):
            continue
        stats.lines_matched += 1

        minute = extract_minute(line)
        try:
            ip = extract_ip(line, options)
        except IpParseError as ex:
            raise IpParseError(ex.token, lineno) from None

        if minute is None or ip is None:
            stats.lines_skipped += 1
            if warn:
                missing = "timestamp" if minute is None else "client IP"
                eprint(f"WARNING: skipped line {lineno}: no {missing} -> {line!r}")
            continue

        stats.record(minute, ip)

    return stats


def _chronological_key(item: Tuple[Tuple[str, str], int]) -> Tuple[int, datetime, str, str]:
    (minute, ip), _ = item
    try:
        parsed = datetime.strptime(minute, MINUTE_FORMAT)
    except ValueError:
        # Unparseable keys go last, in string order.
        return 1, datetime.min, minute, ip
    return 0, parsed, minute, ip


def sorted_rows(stats: MinuteIpStats, order: str = "lexical") -> List[Row]:
    """
    Turn the aggregate into report rows.

    "lexical" compares the raw (minute, ip) strings. Month names make that
    order wrong across month and year boundaries ("01/Mar/..." sorts before
    "02/Feb/..."). "chronological" parses the minute first.

    Args:
        stats: MinuteIpStats from aggregate()
        order: "lexical" or "chronological"

    Returns:
        List of (minute, ip, count) tuples.
    """
    if order not in SORT_ORDERS:
        raise ValueError(f"unknown sort order: {order!r}")

    if order == "chronological":
        items = sorted(stats.counts.items(), key=_chronological_key)
    else:
        items = sorted(stats.counts.items())

    return [(minute, ip, count) for (minute, ip), count in items]


def print_report(rows: Iterable[Row], out: Optional[TextIO] = None) -> None:
    """
    Print the fixed-width report table.

    Args:
        rows: (minute, ip, count) tuples, already ordered
        out: output stream (defaults to stdout)
    """
    if out is None:
        out = sys.stdout

    print(f"{'Time (Minute)':<{TIME_COL_WIDTH}} | {'Internal IP':<{IP_COL_WIDTH}} | Requests", file=out)
    print(f"{'':-<{TIME_COL_WIDTH}}-+-{'':-<{IP_COL_WIDTH}}-+-{'':-<{COUNT_RULE_WIDTH}}", file=out)

    for minute, ip, count in rows:
        print(f"{minute:<{TIME_COL_WIDTH}} | {ip:<{IP_COL_WIDTH}} | {count}", file=out)


def print_summary(stats: MinuteIpStats) -> None:
    eprint(
        f"Read {stats.lines_read} lines: {stats.lines_matched} matched, "
        f"{stats.lines_skipped} skipped, {stats.lines_undecodable} undecodable, "
        f"{stats.total_requests} requests in {len(stats.counts)} rows"
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse and validate command-line arguments.

    Args:
        argv: optional argv list for testing (defaults to sys.argv)

    Returns:
        argparse.Namespace with parsed args.
    """
    parser = argparse.ArgumentParser(
        prog="odata-traffic-report",
        description="Count HCMFAB OData requests per minute and client IP in an access log.",
    )

    parser.add_argument(
        "logfile",
        nargs="?",
        type=Path,
        default=default_log_path(),
        help="Path to access log file (default: $HOME/access.log)",
    )
    parser.add_argument(
        "--ip-mode",
        choices=IP_MODES,
        default="forwarded-for",
        help="Where the client IP comes from (default: forwarded-for)",
    )
    parser.add_argument(
        "--strict-ip",
        action="store_true",
        help="Positional mode: abort on a token that is not an IP address",
    )
    parser.add_argument("--sort", choices=SORT_ORDERS, default="lexical", help="Row order (default: lexical)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Report skipped lines and totals on stderr")

    args = parser.parse_args(argv)

    if args.strict_ip and args.ip_mode != "positional":
        parser.error("--strict-ip requires --ip-mode positional")

    return args


def main(argv: Optional[list[str]] = None) -> int:
    """
    Program entrypoint (callable for tests).

    Steps:
    - parse CLI args
    - validate file
    - aggregate matching lines
    - print report

    Args:
        argv: optional argv list for testing

    Returns:
        Process exit code (0 = ok, 1 = invalid IP in strict mode, 2 = error)
    """
    args = parse_args(argv)
    path = args.logfile

    # Validate file existence and readability.
    try:
        validate_file_readable(path)
    except FileNotFoundError:
        eprint(f"ERROR: file not found: {path}")
        return 2
    except IsADirectoryError:
        eprint(f"ERROR: not a file: {path}")
        return 2
    except PermissionError:
        eprint(f"ERROR: no permission to read file: {path}")
        return 2
    except OSError as ex:
        eprint(f"ERROR: cannot open file: {path} ({ex})")
        return 2

    options = ExtractOptions(ip_mode=args.ip_mode, strict_ip=args.strict_ip)
    stats = MinuteIpStats()

    try:
        aggregate(iter_lines(path, stats), options, stats=stats, warn=args.verbose)
    except IpParseError as ex:
        eprint(f"ERROR: {ex}")
        return 1

    print_report(sorted_rows(stats, args.sort))

    if args.verbose:
        print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
