"""Format and lint multichat with ruff."""

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def _targets() -> list[str]:
    tests = sorted(str(p) for p in ROOT.glob("test_*.py"))
    return [str(ROOT / "multichat"), str(ROOT / "scripts"), *tests]


def _ruff(*args: str) -> None:
    subprocess.run([sys.executable, "-m", "ruff", *args], check=True)


def main() -> None:
    targets = _targets()
    try:
        _ruff("format", *targets)
        # Whitespace-only fixes need preview + unsafe
        _ruff("check", "--preview", "--fix", "--unsafe-fixes", "--select", "W291,W293,E3", *targets)
        _ruff("check", "--fix", "--ignore", "E501", *targets)
    except subprocess.CalledProcessError as e:
        sys.exit(e.returncode)


if __name__ == "__main__":
    main()
