"""Setup script for gitmem"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
this_directory = Path(__file__).parent
long_description = ""
readme_path = this_directory / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")

setup(
    name="gitmem",
    version="0.1.0",
    description="Incremental, LLM-classified git history index with hotspots, coupling and trends",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Version Control :: Git",
        "Topic :: Software Development :: Quality Assurance",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.11",
    install_requires=[
        "numpy>=1.20.0",
        "typer>=0.9.0",
        "click>=8.0.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "anthropic>=0.40.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "httpx>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "gitmem=gitmem.cli:run",
        ],
    },
    keywords="git history commits classification hotspots coupling llm",
)
