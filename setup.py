from pathlib import Path

from setuptools import find_packages, setup

ROOT = Path(__file__).parent


def read_version() -> str:
    """Pull ``__version__`` out of the package without importing it."""
    for line in (ROOT / "energy_sync" / "__init__.py").read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip("\"'")
    return "0.0.0"


setup(
    name="energy-sync",
    version=read_version(),
    description="Streamed energy balances with optimistic harvest and burn actions",
    packages=find_packages(include=["energy_sync", "energy_sync.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.9",
        "orjson",
        "pydantic>=2",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
