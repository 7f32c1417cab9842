"""
recordhistory setup.py - Package configuration.
"""

from setuptools import find_packages, setup

setup(
    name="recordhistory",
    version="1.0.0",
    description="recordhistory - linear version history for SQLAlchemy records",
    packages=find_packages(include=["recordhistory", "recordhistory.*"]),
    python_requires=">=3.11",
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pyyaml>=6.0",
    ],
    extras_require={
        "migrations": [
            "alembic>=1.13",
        ],
        "test": [
            "pytest>=8.0",
        ],
    },
)
