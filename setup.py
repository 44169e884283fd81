"""
Setup script for medhistory package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

setup(
    name="medhistory",
    version="0.1.0",
    description="AI-generated medical histories with sanitized HTML/PDF rendering",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Medical History Team",
    python_requires=">=3.11",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={
        "medhistory.rendering": ["templates/*.html"],
    },
    install_requires=[
        "pydantic>=2.6.0",
        "pyyaml>=6.0.0",
        "python-dotenv>=1.0.0",
        "google-cloud-aiplatform>=1.60.0",
        "google-cloud-storage>=2.14.0",
        "google-api-core>=2.15.0",
        "google-auth>=2.27.0",
        "psycopg[binary]>=3.1.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pymupdf>=1.23.0",
        "markdown>=3.5.0",
        "nh3>=0.2.15",
        "jinja2>=3.1.0",
        "typer>=0.9.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-cov>=4.1.0",
            "httpx>=0.27.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "medhistory=medhistory.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Healthcare Industry",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
