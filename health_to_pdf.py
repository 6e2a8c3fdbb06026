#!/usr/bin/env python3
import sys
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Optional

from heart_rate import export_heart_rate
from medication import export_medication
from sleep import export_sleep


class ReportType(str, Enum):
    HEART = "heart"
    SLEEP = "sleep"
    MEDICATION = "medication"


DEFAULT_OUTPUTS = MappingProxyType({
    ReportType.HEART: "heart-rate-report.pdf",
    ReportType.SLEEP: "sleep-report.pdf",
    ReportType.MEDICATION: "medication-report.pdf",
})

EXPORTERS = {
    ReportType.HEART: export_heart_rate,
    ReportType.SLEEP: export_sleep,
    ReportType.MEDICATION: export_medication,
}


def _check_tables(*tables):
    """Every ReportType needs a default filename and an exporter."""
    for table in tables:
        missing = set(ReportType) - set(table)
        if missing:
            raise RuntimeError(f"No entry for report type(s): {sorted(t.value for t in missing)}")


_check_tables(DEFAULT_OUTPUTS, EXPORTERS)

TYPE_CHOICES = ", ".join(t.value for t in ReportType)
HELP_FLAGS = ("--help", "-h")

USAGE = f"""
Apple Health Export to PDF
===========================

Usage: health-to-pdf --type <TYPE> --input <FILE> [OPTIONS]

Required:
  --type, -t <TYPE>      Type of data to export: {TYPE_CHOICES}
  --input, -i <FILE>     Path to Apple Health export.xml (or export.zip)

Optional:
  --output, -o <FILE>    Output PDF filename (default: {DEFAULT_OUTPUTS[ReportType.HEART]},
                         {DEFAULT_OUTPUTS[ReportType.SLEEP]}, {DEFAULT_OUTPUTS[ReportType.MEDICATION]})
  --no-daily-table       Exclude daily data table from PDF (saves space)
  --debug                Print diagnostic output while exporting
  --help, -h             Show this help message

Examples:
  health-to-pdf --type heart --input export.xml
  health-to-pdf --type sleep --input export.xml --output my-sleep.pdf
  health-to-pdf --type medication --input export.xml --no-daily-table
"""


class UsageError(Exception):
    """Invalid or incomplete command line."""


@dataclass
class RawOptions:
    type: Optional[str] = None
    input: Optional[str] = None
    output: Optional[str] = None
    include_daily_table: bool = True
    help: bool = False
    debug: bool = False


@dataclass(frozen=True)
class ReportConfig:
    type: ReportType
    input: str
    output: str
    include_daily_table: bool = True
    debug: bool = False


def print_usage():
    print(USAGE)


def parse_args(argv):
    """
    Turn argv into RawOptions. Tokens that are not flags fill input, then
    output (older invocations passed both positionally).
    """
    options = RawOptions()
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("--type", "-t", "--input", "-i", "--output", "-o"):
            i += 1
            value = argv[i] if i < len(argv) else None
            if arg in ("--type", "-t"):
                options.type = value
            elif arg in ("--input", "-i"):
                options.input = value
            else:
                options.output = value
        elif arg == "--no-daily-table":
            options.include_daily_table = False
        elif arg == "--debug":
            options.debug = True
        elif arg in HELP_FLAGS:
            options.help = True
        elif not arg.startswith("--"):
            if not options.input:
                options.input = arg
            elif not options.output:
                options.output = arg
        i += 1
    return options


def validate(options: RawOptions) -> ReportConfig:
    if not options.input:
        raise UsageError("--input is required")
    if not options.type:
        raise UsageError("--type is required (heart, sleep, or medication)")
    try:
        report_type = ReportType(options.type)
    except ValueError:
        raise UsageError(f"--type must be one of: {TYPE_CHOICES}") from None
    if not Path(options.input).exists():
        raise UsageError(f"Input file not found: {options.input}")

    return ReportConfig(
        type=report_type,
        input=options.input,
        output=options.output or DEFAULT_OUTPUTS[report_type],
        include_daily_table=options.include_daily_table,
        debug=options.debug,
    )


def describe_error(exc):
    if isinstance(exc, KeyboardInterrupt):
        return "Interrupted"
    message = str(exc).strip()
    return message or type(exc).__name__


def print_error(message):
    print(f"❌ Error: {message}", file=sys.stderr)


def dispatch(config: ReportConfig) -> int:
    start = time.perf_counter()
    try:
        print("📱 Apple Health Export to PDF")
        print(f"📂 Input: {config.input}")
        print(f"📊 Type: {config.type.value}")
        print(f"📄 Output: {config.output}")
        print(f"📋 Daily table: {'Yes' if config.include_daily_table else 'No'}")
        print("")

        exporter = EXPORTERS[config.type]
        exporter(config.input, config.output, config.include_daily_table, debug=config.debug)
    except (Exception, KeyboardInterrupt) as e:
        print_error(describe_error(e))
        return 1

    elapsed = time.perf_counter() - start
    print(f"\n✅ PDF report created: {config.output} ({elapsed:.1f}s)")
    print("🏥 You can now share this with your doctor!")
    return 0


def main(argv=None):
    argv = sys.argv[1:] if argv is None else list(argv)

    if not argv or any(a in HELP_FLAGS for a in argv):
        print_usage()
        return 0

    options = parse_args(argv)
    if options.help:
        print_usage()
        return 0

    try:
        config = validate(options)
    except UsageError as e:
        print_error(e)
        print_usage()
        return 1

    return dispatch(config)


if __name__ == "__main__":
    sys.exit(main())
