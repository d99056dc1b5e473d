"""Setup configuration for the Guestcord Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="guestcord",
    version="0.1.0",
    description="A Discord bot that grants temporary guest access and removes guests when it expires",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord",
        "aiohttp",
        "aiosqlite",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "guestcord=guestcord.main:main",
        ],
    },
)
