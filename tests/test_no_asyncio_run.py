"""
Test that no asyncio.run() calls exist in app/ code.

The orchestrator and CRM client run inside the server's event loop; a nested
asyncio.run() there would fail at runtime.
"""

from pathlib import Path


def find_asyncio_run_usage(file_path: Path) -> list[tuple[int, str]]:
    """
    Find all asyncio.run() calls in a Python file.

    Returns:
        List of (line_number, line_content) tuples
    """
    issues = []
    lines = file_path.read_text(encoding="utf-8").split("\n")
    for i, line in enumerate(lines, start=1):
        if "asyncio.run(" in line:
            stripped = line.strip()
            if not stripped.startswith("#") and not stripped.startswith('"""'):
                issues.append((i, line))
    return issues


def test_no_asyncio_run_in_app():
    app_dir = Path(__file__).parent.parent / "app"
    assert app_dir.exists(), "app/ directory not found"

    all_issues = []
    for path in sorted(app_dir.rglob("*.py")):
        for line_num, line_content in find_asyncio_run_usage(path):
            all_issues.append(f"{path.relative_to(app_dir.parent)}:{line_num}: {line_content.strip()}")

    assert not all_issues, "asyncio.run() found in app code:\n" + "\n".join(all_issues)
