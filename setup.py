"""Setup configuration for the gitmod Telegram moderation bot."""

from setuptools import setup, find_packages

setup(
    name="gitmod",
    version="0.0.1",
    description="A Telegram moderation bot that keeps its rules in a GitHub-hosted JSON document",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite",
        "openai",
        "prompt_toolkit",
        "python-dotenv",
        "PyYAML",
        "requests",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "gitmod=gitmod.main:main",
            "gitmod-sweep=gitmod.main:sweep_once",
        ],
    },
)
