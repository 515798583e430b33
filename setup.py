"""Setup configuration for tinker-runtime package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = (
    readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""
)

setup(
    name="tinker-runtime",
    version="0.1.0",
    description="Async client runtime for the Tinker training and sampling service: retries, tenant backoff, future polling and chunked batches",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["tinker_runtime", "tinker_runtime.*"]),
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.24.0",  # Pooled async transport
        "pydantic>=2.0",  # Client configuration validation
        "tenacity>=8.4.0",  # Retry loop (async sleep injection, stop_before_delay)
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=0.990",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="machine-learning training sampling http-client retry rate-limiting asyncio",
)
