#!/usr/bin/env python3
"""
Multi-tenancy scoping lint check.

Row-level security is the last line of defense; every query in application
code is still expected to filter on tenant_id itself. This script scans the
package for:

1. SELECTs of tenant-owned models with no tenant_id filter nearby
2. Session-level tenant binding (set_config(..., false) / SET app.current_tenant_id)
3. Raw SQL against tenant tables that never mentions tenant_id
4. Hardcoded tenant UUIDs

USAGE:
    python scripts/check_tenant_scoping.py

    # Or with verbose output
    python scripts/check_tenant_scoping.py -v

    # Fail on CRITICAL/HIGH findings (CI)
    python scripts/check_tenant_scoping.py --strict

EXIT CODES:
    0 - No issues found (or only lower-severity findings without --strict)
    1 - Critical/high issues found with --strict
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

# Root directory to scan
SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "boom_booking"

# Files/directories to exclude
EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "tenancy/",  # Tenancy module owns the binding and the scoped helpers
    "test_",
]

TENANT_MODELS = ("Room", "Booking", "BusinessHours", "Setting", "ApiKey", "AuditLog")
TENANT_TABLES = ("rooms", "bookings", "business_hours", "settings", "api_keys", "audit_logs")

# Lines after a match searched for a tenant filter (multi-line statements)
CONTEXT_LINES = 6

SCOPED_PATTERN = re.compile(r"\.tenant_id\s*==|scoped_select\(|tenant_filter\(|tenant_id\s*=\s*:")

# Patterns that indicate tenant scoping issues
BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"set_config\([^)]*,\s*false\s*\)",
        "CRITICAL",
        "Session-level tenant binding - survives on pooled connections, use set_db_tenant()",
    ),
    (
        r"\bSET\s+(SESSION\s+)?app\.current_tenant_id",
        "CRITICAL",
        "Session-level SET of app.current_tenant_id - use set_db_tenant()",
    ),
    (
        rf"select\(({'|'.join(TENANT_MODELS)})\)",
        "HIGH",
        "Tenant model query without tenant_id filter - potential cross-tenant leak",
    ),
    (
        rf"\b(FROM|UPDATE|INTO|JOIN)\s+({'|'.join(TENANT_TABLES)})\b",
        "HIGH",
        "Raw SQL on a tenant table without tenant_id - potential cross-tenant leak",
    ),
    (
        r"tenant_id\s*=\s*(uuid\.UUID\()?[\"'][0-9a-f]{8}-[0-9a-f]{4}-",
        "WARNING",
        "Hardcoded tenant id - should come from TenantContext",
    ),
]

# Patterns that are OK (suppress false positives)
IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"noqa:\s*tenant-scoping",  # Explicit suppression
]


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line, re.IGNORECASE) for pattern in IGNORE_PATTERNS)


def scan_source(source: str, file_path: Path = Path("<string>")) -> List[Finding]:
    """Scan python source text for tenant scoping issues."""
    findings = []
    lines = source.split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue

        for pattern, severity, description in BAD_PATTERNS:
            if not re.search(pattern, line, re.IGNORECASE if severity != "HIGH" else 0):
                continue
            if severity == "HIGH":
                context_window = "\n".join(lines[line_num - 1:line_num - 1 + CONTEXT_LINES])
                if SCOPED_PATTERN.search(context_window):
                    continue
            findings.append(Finding(
                file=file_path,
                line_num=line_num,
                line_text=line,
                severity=severity,
                description=description,
            ))

    return findings


def scan_file(file_path: Path) -> List[Finding]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []
    return scan_source(content, file_path)


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "WARNING"]


def print_report(findings: List[Finding], verbose: bool = False):
    if not findings:
        print("No tenant scoping issues found.")
        return

    by_severity = {}
    for f in findings:
        by_severity.setdefault(f.severity, []).append(f)

    print("\n" + "=" * 60)
    print("MULTI-TENANCY SCOPING CHECK REPORT")
    print("=" * 60)

    print("\nSUMMARY:")
    for sev in SEVERITY_ORDER:
        count = len(by_severity.get(sev, []))
        if count > 0:
            print(f"  {sev}: {count}")
    print(f"\nTOTAL: {len(findings)} issues")

    if verbose:
        print("\n" + "-" * 60)
        for sev in SEVERITY_ORDER:
            for f in by_severity.get(sev, []):
                print(f"  {f}")
    else:
        print("\nRun with -v for detailed findings.")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Check codebase for multi-tenancy scoping issues")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed findings")
    parser.add_argument("--strict", action="store_true", help="Exit with code 1 on critical/high issues")
    parser.add_argument("--path", type=Path, default=SCAN_ROOT, help=f"Path to scan (default: {SCAN_ROOT})")
    args = parser.parse_args()

    if not args.path.exists():
        print(f"Error: Path {args.path} does not exist", file=sys.stderr)
        sys.exit(1)

    print(f"Scanning {args.path}...")
    findings = scan_directory(args.path)
    print_report(findings, verbose=args.verbose)

    if args.strict:
        critical_count = sum(1 for f in findings if f.severity in ("CRITICAL", "HIGH"))
        if critical_count > 0:
            print(f"\n{critical_count} critical/high issues found. Failing.")
            sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
