"""
Setup configuration for compintel package.
"""

from setuptools import setup, find_packages

setup(
    name="compintel",
    version="0.1.0",
    description="Competitor analysis orchestration client for the Supabase backend",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "supabase>=2.10",
        "supabase-auth>=2.9",
        "httpx>=0.24",
        "postgrest>=0.13",
        "pydantic>=2.0",
        "python-dotenv>=1.0",
        "tenacity>=8.2",
        "click>=8.0",
        "logfire>=0.50",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "compintel=compintel.cli.main:cli",
        ],
    },
)
