"""
Setup script for numtab-core

Build configuration lives in pyproject.toml ([build-system] and pytest
options). This script declares the package metadata:
1. Version read from src/numtab/__init__.py
2. src/ layout with the numtab package
3. Runtime and test dependencies
"""

from pathlib import Path
from setuptools import setup, find_packages


# Read version from src/numtab/__init__.py
def get_version():
    version_file = Path("src/numtab/__init__.py")
    if version_file.exists():
        for line in version_file.read_text().splitlines():
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip('"').strip("'")
    return "0.1.0"


# Read long description from README
def get_long_description():
    readme = Path("README.md")
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


setup(
    name="numtab-core",
    version=get_version(),
    description="Typed numeric tables with dense, packed symmetric, CSR and merged layouts",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.21",
        "scipy>=1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    zip_safe=True,
)
