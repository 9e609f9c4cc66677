"""
Setup script for the Mean-Variance Frontier Engine.
"""

from setuptools import setup
from pathlib import Path

here = Path(__file__).parent

# Read README file
readme_file = here / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = here / "requirements.txt"
requirements = []
if requirements_file.exists():
    with open(requirements_file, 'r') as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]

# Flat modules under src/, imported by module name
modules = sorted(path.stem for path in (here / "src").glob("*.py") if path.stem != "__init__")

setup(
    name="mv-frontier",
    version="0.1.0",
    description="Markowitz efficient frontiers and rolling tangency portfolio analysis",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Portfolio Optimization Team",
    author_email="team@example.com",
    package_dir={"": "src"},
    py_modules=modules,
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=6.2.0",
            "pytest-cov>=3.0.0",
            "pytest-mock>=3.6.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.910",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Office/Business :: Financial :: Investment",
        "Topic :: Scientific/Engineering :: Mathematics",
    ],
    keywords="portfolio optimization, efficient frontier, mean-variance, tangency portfolio",
    entry_points={
        "console_scripts": [
            "mv-frontier=main:main",
        ],
    },
)
