"""Setup script for attestkit."""

from pathlib import Path

from setuptools import setup, find_packages

readme = Path(__file__).parent / "README.md"
long_description = readme.read_text(encoding="utf-8") if readme.exists() else ""

setup(
    name="attestkit",
    version="0.1.0",
    description="Keyless signing and verification of BuildKit attestations",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "cryptography>=41.0.0",
        "PyYAML>=6.0",
        "requests>=2.31.0",
        "click>=8.1.0",
        "sigstore>=3.0.0",
        "rfc3161-client>=1.0.0",
        "structlog>=23.1.0",
        "tenacity>=8.2.0",
        "packaging>=23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-mock>=3.11.0",
            "responses>=0.23.0",
            "PyJWT>=2.8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "attestkit=attestkit.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
