#!/usr/bin/env python3
"""
Test catalog for framectl

Collects every numbered test (`def test_NNN_name` preceded by a
`# TESTNNN: description` comment) and writes TEST_CATALOG.md, grouped by
the area each hundred-block of numbers belongs to. With --check it only
reports duplicate numbers and tests whose comment is missing or does not
match the function number.
"""

import argparse
import re
import sys
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

TEST_DEF = re.compile(r'\s*(?:async\s+)?def\s+(test_(\d+)_\w+)\s*\(')
TEST_COMMENT = re.compile(r'#\s*TEST(\d+):\s*(.*)')

AREAS = {
    0: "Core: errors, scopes, progress, events, config",
    100: "Handle registry",
    200: "Transfer ports",
    300: "Frame tree and navigation tracker",
    400: "Execution contexts and injected runtime",
}


@dataclass
class CatalogEntry:
    number: int
    function_name: str
    description: Optional[str]
    comment_number: Optional[int]
    file_path: str
    line_number: int

    @property
    def area(self) -> str:
        return AREAS.get((self.number // 100) * 100, "Other")


def read_entries(file_path: Path, root: Path) -> List[CatalogEntry]:
    """Numbered tests of one file, with the comment block right above each"""
    lines = file_path.read_text(encoding='utf-8').splitlines()
    entries = []
    for index, line in enumerate(lines):
        match = TEST_DEF.match(line)
        if not match:
            continue

        j = index - 1
        while j >= 0 and lines[j].strip().startswith('@'):
            j -= 1
        comment = lines[j].strip() if j >= 0 else ''
        found = TEST_COMMENT.match(comment)

        entries.append(CatalogEntry(
            number=int(match.group(2)),
            function_name=match.group(1),
            description=found.group(2).strip() if found else None,
            comment_number=int(found.group(1)) if found else None,
            file_path=str(file_path.relative_to(root)),
            line_number=index + 1,
        ))
    return entries


def collect(root: Path) -> List[CatalogEntry]:
    entries = []
    for path in sorted((root / 'tests').rglob('test_*.py')):
        entries.extend(read_entries(path, root))
    return sorted(entries, key=lambda e: e.number)


def problems(entries: List[CatalogEntry]) -> List[str]:
    found = []
    by_number: Dict[int, List[CatalogEntry]] = defaultdict(list)
    for entry in entries:
        by_number[entry.number].append(entry)
        location = f"{entry.file_path}:{entry.line_number}"
        if entry.description is None:
            found.append(f"{location}: {entry.function_name} has no TEST comment")
        elif entry.comment_number != entry.number:
            found.append(f"{location}: comment says TEST{entry.comment_number:03d}, function is {entry.number:03d}")
    for number, same in sorted(by_number.items()):
        if len(same) > 1:
            names = ", ".join(f"{e.file_path}:{e.line_number}" for e in same)
            found.append(f"TEST{number:03d} is used more than once: {names}")
    return found


def write_catalog(entries: List[CatalogEntry], output: Path) -> None:
    grouped: Dict[str, List[CatalogEntry]] = defaultdict(list)
    for entry in entries:
        grouped[entry.area].append(entry)

    out = ["# framectl Test Catalog", "", f"**Total Tests:** {len(entries)}", ""]
    for area in sorted(grouped, key=lambda a: grouped[a][0].number):
        out += [f"## {area}", "", "| Test # | Function | Description | Location |", "|---|---|---|---|"]
        for entry in grouped[area]:
            description = (entry.description or "").replace('|', '\\|')
            out.append(
                f"| test{entry.number:03d} | `{entry.function_name}` | {description} "
                f"| {entry.file_path}:{entry.line_number} |"
            )
        out.append("")
    output.write_text("\n".join(out), encoding='utf-8')


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Catalog numbered framectl tests")
    parser.add_argument('--check', action='store_true', help="only validate numbering and comments")
    parser.add_argument('--output', default='TEST_CATALOG.md', help="catalog file, relative to the repo root")
    args = parser.parse_args(argv)

    root = Path(__file__).resolve().parent
    entries = collect(root)
    issues = problems(entries)
    for issue in issues:
        print(f"warning: {issue}", file=sys.stderr)

    if args.check:
        print(f"{len(entries)} numbered tests, {len(issues)} problem(s)")
        return 1 if issues else 0

    output = root / args.output
    write_catalog(entries, output)
    print(f"Wrote {len(entries)} tests to {output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
