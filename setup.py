#!/usr/bin/env python3
"""
Setup script for twitchbot
"""

from setuptools import setup, find_packages

setup(
    name="twitchbot",
    version="0.1.0",
    description="Minimal Twitch chat bot: single channel, keep-alive, reconnect and owner shutdown command",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets>=15.0",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "aioconsole>=0.8.1",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'twitchbot=twitchbot.cli:main',
        ],
    },
)
